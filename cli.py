# cli.py

import argparse
import json
import signal
import sys
import threading
from pathlib import Path

from config import HashOptions, SystemConfig
from core.batch_processor import BatchProcessor
from core.feature_fusion import FeatureFusionEngine
from core.grouping import GroupingEngine
from core.hashing import HashComputer
from core.similarity import SimilarityScorer
from utils.file_utils import get_image_files
from utils.logging_config import PerformanceLogger, setup_logging
from utils.report_generator import DuplicateReportGenerator


def hash_command(args) -> int:
    """Print the hashes of one image"""
    options = HashOptions(size=args.size, precise=args.precise)
    hashes = HashComputer(options).compute_for_file(args.image)

    if not hashes:
        print(f"Error: cannot hash {args.image}", file=sys.stderr)
        return 1

    print(json.dumps(hashes.to_dict(), indent=2))
    return 0


def compare_command(args) -> int:
    """Compare two images"""
    processor = BatchProcessor(n_workers=1, show_progress=False)
    first = processor.build_item(args.first)
    second = processor.build_item(args.second)

    for item in (first, second):
        if not item.hashes:
            print(f"Error: cannot read {item.id}", file=sys.stderr)
            return 1

    scorer = SimilarityScorer()
    hashed = scorer.hash_similarity(first, second)
    adjusted = scorer.adjusted_similarity(first, second)
    fused = FeatureFusionEngine().compare(first, second)

    print(f"Hash similarity:     {hashed.similarity:.1f}")
    print(f"Adjusted similarity: {adjusted.similarity:.1f}")
    print(f"Fused similarity:    {fused.similarity:.1f} ({fused.method})")
    return 0


def _load_cache(path: str) -> dict:
    if path and Path(path).exists():
        with open(path, 'r') as f:
            return json.load(f)
    return {}


def duplicate_command(args) -> int:
    """Detect duplicate photos"""
    config = SystemConfig.load(args.config) if args.config else SystemConfig()
    setup_logging(config.log_level, args.log_dir if args.log_dir is not None else config.log_dir)
    perf = PerformanceLogger()

    print(f"Scanning for duplicates in: {args.directory}")
    image_paths = get_image_files(args.directory, recursive=not args.no_recursive)
    print(f"Found {len(image_paths)} images")

    cache = _load_cache(args.cache)
    processor = BatchProcessor(
        n_workers=args.workers or config.n_workers,
        hash_options=config.hash,
        hash_cache=cache,
    )
    with perf.timed('build_items', count=len(image_paths)):
        items = processor.build_items(image_paths)

    if args.cache:
        with open(args.cache, 'w') as f:
            json.dump(cache, f)

    engine = GroupingEngine(
        config.grouping,
        lsh_config=config.lsh,
        enhanced_lsh_config=config.enhanced_lsh,
        hash_weights=config.similarity.hash_weights,
    )

    # Ctrl+C stops grouping at the next item instead of killing the process
    cancel_event = threading.Event()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: cancel_event.set())
    try:
        with perf.timed('grouping', count=len(items)):
            result = engine.find_all_similar_groups(items, threshold=args.threshold,
                                                    cancel_event=cancel_event)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if result.aborted:
        print("Grouping aborted.")
        return 130

    total_dups = sum(len(group) - 1 for group in result.groups)
    print(f"\nFound {len(result.groups)} duplicate groups with {total_dups} total duplicates")

    report_gen = DuplicateReportGenerator({item.id: item for item in items})

    if args.json:
        report_gen.generate_json(result, args.json)
        print(f"Groups saved to: {args.json}")

    if args.report:
        report_gen.generate_report(result, args.report)
        print(f"Report saved to: {args.report}")
    else:
        # Print to console
        for i, group in enumerate(result.groups, 1):
            print(f"\nGroup {i}:")
            print(f"  Keep: {group.key_id}")
            for member in group.members:
                if member.id != group.key_id:
                    print(f"    - {member.id} ({member.similarity:.0f}, {member.method})")

    for operation in ('build_items', 'grouping'):
        stats = perf.get_statistics(operation)
        if stats:
            print(f"{operation}: {stats['total']:.2f}s")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Photo near-duplicate finder - Command Line Interface"
    )
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Hash command
    hash_parser = subparsers.add_parser('hash', help='Print perceptual hashes of an image')
    hash_parser.add_argument('image', help='Path to image')
    hash_parser.add_argument('--size', type=int, default=8, help='Hash grid size')
    hash_parser.add_argument('--precise', action='store_true',
                             help='Use the DCT perceptual hash (size >= 32)')
    hash_parser.set_defaults(func=hash_command)

    # Compare command
    compare_parser = subparsers.add_parser('compare', help='Compare two images')
    compare_parser.add_argument('first', help='Path to first image')
    compare_parser.add_argument('second', help='Path to second image')
    compare_parser.set_defaults(func=compare_command)

    # Duplicate detection command
    duplicate_parser = subparsers.add_parser('duplicates',
                                             help='Group near-duplicate photos')
    duplicate_parser.add_argument('directory', help='Directory to scan')
    duplicate_parser.add_argument('-t', '--threshold', type=float, default=None,
                                  help='Similarity threshold (0-100)')
    duplicate_parser.add_argument('-c', '--config', help='YAML configuration file')
    duplicate_parser.add_argument('-w', '--workers', type=int, help='Number of workers')
    duplicate_parser.add_argument('--cache', help='JSON file used as hash cache')
    duplicate_parser.add_argument('--json', help='Output JSON file for groups')
    duplicate_parser.add_argument('-r', '--report', help='Output HTML report path')
    duplicate_parser.add_argument('--log-dir', help='Log directory (empty string disables file logs)')
    duplicate_parser.add_argument('--no-recursive', action='store_true',
                                  help='Do not descend into subdirectories')
    duplicate_parser.set_defaults(func=duplicate_command)

    return parser


def main_cli(argv=None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main_cli())
