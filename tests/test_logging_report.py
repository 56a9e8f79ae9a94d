# tests/test_logging_report.py

import json
import logging
import pytest

from core.models import (
    GroupMember, GroupingResult, ImageItem, QualityMetrics, SimilarityGroup
)
from utils.file_utils import format_file_size, get_image_files
from utils.logging_config import JSONFormatter, PerformanceLogger, setup_logging
from utils.report_generator import DuplicateReportGenerator


@pytest.fixture
def grouping_result():
    group = SimilarityGroup(
        key_id='keep.jpg',
        seed_id='dup.jpg',
        members=[GroupMember('dup.jpg', 100.0, 'adjusted'),
                 GroupMember('keep.jpg', 95.0, 'adjusted'),
                 GroupMember('other<dup>.jpg', 91.0, 'adjusted')],
    )
    return GroupingResult(groups=[group])


@pytest.fixture
def items():
    quality = QualityMetrics(80.0, 50.0, 40.0, 60.0)
    return {
        'keep.jpg': ImageItem('keep.jpg', quality=quality, metadata={'file_size': 3000}),
        'dup.jpg': ImageItem('dup.jpg', metadata={'file_size': 1000}),
        'other<dup>.jpg': ImageItem('other<dup>.jpg', metadata={'file_size': 500}),
    }


def test_space_savings_skip_representative(items, grouping_result):
    generator = DuplicateReportGenerator(items)
    assert generator.calculate_space_savings(grouping_result) == 1500

    summary = generator.summary(grouping_result)
    assert summary == {'aborted': False, 'group_count': 1, 'duplicate_count': 2,
                       'space_savings_bytes': 1500}


def test_json_report(items, grouping_result, tmp_path):
    path = tmp_path / "groups.json"
    DuplicateReportGenerator(items).generate_json(grouping_result, str(path))

    data = json.loads(path.read_text())
    assert data['groups'][0]['key_id'] == 'keep.jpg'
    assert [m['id'] for m in data['groups'][0]['members']][0] == 'dup.jpg'


def test_html_report_escapes_names(items, grouping_result, tmp_path):
    path = tmp_path / "report.html"
    DuplicateReportGenerator(items).generate_report(grouping_result, str(path))

    content = path.read_text()
    assert "Total duplicate groups:</strong> 1" in content
    assert "other&lt;dup&gt;.jpg" in content
    assert "Quality: 60" in content


def test_format_file_size():
    assert format_file_size(512) == "512.00 B"
    assert format_file_size(1536) == "1.50 KB"


def test_get_image_files(tmp_path):
    (tmp_path / "sub").mkdir()
    for name in ("b.jpg", "a.PNG", "notes.txt", "sub/c.jpeg"):
        (tmp_path / name).write_bytes(b"")

    found = get_image_files(str(tmp_path))
    assert [p.split("/")[-1] for p in found] == ["a.PNG", "b.jpg", "c.jpeg"]
    assert len(get_image_files(str(tmp_path), recursive=False)) == 2


def test_json_formatter():
    record = logging.LogRecord('core.grouping', logging.INFO, __file__, 10,
                               "found %d groups", (3,), None)
    data = json.loads(JSONFormatter().format(record))
    assert data['message'] == "found 3 groups"
    assert data['level'] == 'INFO'
    assert data['logger'] == 'core.grouping'


def test_setup_logging_writes_files(tmp_path):
    logger = setup_logging("WARNING", str(tmp_path), name="photo_dedup_test")
    logger.info("structured entry")
    for handler in logger.handlers:
        handler.flush()

    assert (tmp_path / "photo_dedup_test.log").exists()
    lines = (tmp_path / "photo_dedup_test_structured.json").read_text().splitlines()
    assert json.loads(lines[-1])['message'] == "structured entry"

    # A second call replaces the handlers instead of stacking them
    setup_logging("INFO", None, name="photo_dedup_test")
    assert len(logger.handlers) == 1
    logger.handlers.clear()


def test_performance_logger(tmp_path):
    perf = PerformanceLogger()
    with perf.timed('hashing', count=3):
        pass
    perf.log_metric('hashing', 2.0)

    stats = perf.get_statistics('hashing')
    assert stats['count'] == 2
    assert stats['max'] == 2.0
    assert perf.get_statistics('grouping') == {}

    path = tmp_path / "metrics.json"
    perf.save_metrics(str(path))
    assert json.loads(path.read_text())[0]['count'] == 3
