import html
import json
from pathlib import Path
from typing import Dict, Optional

from core.models import GroupingResult, ImageItem, SimilarityGroup
from utils.file_utils import format_file_size


class DuplicateReportGenerator:
    """
    Generate reports for duplicate grouping results
    """

    def __init__(self, items: Optional[Dict[str, ImageItem]] = None):
        self.items = items or {}

    def _file_size(self, item_id: str) -> int:
        item = self.items.get(item_id)
        if item is not None and 'file_size' in item.metadata:
            return int(item.metadata['file_size'])
        return 0

    def calculate_space_savings(self, result: GroupingResult) -> int:
        """Bytes freed by deleting every member except the representatives"""
        return sum(
            self._file_size(member.id)
            for group in result.groups
            for member in group.members
            if member.id != group.key_id
        )

    def summary(self, result: GroupingResult) -> dict:
        return {
            'aborted': result.aborted,
            'group_count': len(result.groups),
            'duplicate_count': sum(len(group) - 1 for group in result.groups),
            'space_savings_bytes': self.calculate_space_savings(result),
        }

    def generate_json(self, result: GroupingResult, output_path: str):
        """Write summary and groups as JSON"""
        data = {
            'summary': self.summary(result),
            'groups': [group.to_dict() for group in result.groups],
        }
        with open(output_path, 'w') as f:
            json.dump(data, f, indent=2)

    def generate_report(self,
                        result: GroupingResult,
                        output_path: str = "duplicate_report.html"):
        """
        Generate HTML report with duplicate groups
        """
        summary = self.summary(result)

        # Add statistics
        stats_html = f"""
        <div class="statistics">
            <h2>Duplicate Detection Summary</h2>
            <p><strong>Total duplicate groups:</strong> {summary['group_count']}</p>
            <p><strong>Total duplicate files:</strong> {summary['duplicate_count']}</p>
            <p><strong>Potential space savings:</strong> {format_file_size(summary['space_savings_bytes'])}</p>
        </div>
        """

        # Add duplicate groups
        groups_html = "<div class='duplicate-groups'>"
        for idx, group in enumerate(result.groups):
            groups_html += self._create_group_html(idx, group)
        groups_html += "</div>"

        final_html = self._create_html_template()
        final_html = final_html.replace("{{STATS}}", stats_html)
        final_html = final_html.replace("{{GROUPS}}", groups_html)

        with open(output_path, 'w') as f:
            f.write(final_html)

    def _item_html(self, item_id: str, css_class: str, caption: str) -> str:
        item = self.items.get(item_id)
        path = item.metadata.get('path', item_id) if item is not None else item_id
        quality = item.quality.score if item is not None and item.quality else None

        info = f"Size: {format_file_size(self._file_size(item_id))}"
        if quality is not None:
            info += f" | Quality: {quality:.0f}"

        return f"""
                <div class="{css_class}">
                    <img src="{html.escape(Path(path).absolute().as_uri())}" />
                    <p>{html.escape(Path(path).name)}</p>
                    <p class="file-info">{html.escape(caption)}</p>
                    <p class="file-info">{info}</p>
                </div>
        """

    def _create_group_html(self, idx: int, group: SimilarityGroup) -> str:
        """Create HTML for a duplicate group"""
        others = [m for m in group.members if m.id != group.key_id]

        group_html = f"""
        <div class="duplicate-group">
            <h3>Group {idx + 1}</h3>
            {self._item_html(group.key_id, 'representative', 'Keep (Representative)')}
            <div class="duplicates-list">
                <h4>Duplicates ({len(others)}) - Consider Deleting</h4>
        """

        for member in others:
            caption = f"Similarity {member.similarity:.0f} ({member.method})"
            group_html += self._item_html(member.id, 'duplicate-item', caption)

        group_html += """
            </div>
        </div>
        """
        return group_html

    def _create_html_template(self) -> str:
        """HTML template for report"""
        return """
        <!DOCTYPE html>
        <html>
        <head>
            <title>Duplicate Detection Report</title>
            <style>
                body { font-family: Arial, sans-serif; margin: 20px; }
                .statistics { background: #f0f0f0; padding: 20px; border-radius: 5px; }
                .duplicate-group { border: 1px solid #ccc; margin: 20px 0; padding: 15px; }
                .representative { background: #e8f5e9; padding: 10px; }
                .duplicates-list { display: grid; grid-template-columns: repeat(auto-fill, minmax(200px, 1fr)); gap: 10px; margin-top: 10px; }
                .duplicate-item { border: 1px solid #ddd; padding: 10px; text-align: center; }
                img { max-width: 100%; height: auto; max-height: 200px; object-fit: contain; }
                .file-info { font-size: 0.9em; color: #666; }
            </style>
        </head>
        <body>
            <h1>Photo Duplicate Report</h1>
            {{STATS}}
            {{GROUPS}}
        </body>
        </html>
        """
