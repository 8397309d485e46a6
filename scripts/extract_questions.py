#!/usr/bin/env python3
"""
Exam Question Extraction Script

Extracts questions from one or more scanned exam papers and optionally saves
them to the question store. Documents are processed one after another.

Usage:
    python scripts/extract_questions.py paper.pdf --year 2023 --course physics-101
    python scripts/extract_questions.py p1.pdf p2.pdf --year 2023 --course physics-101 --save
    python scripts/extract_questions.py paper.pdf --year 2023 --course c1 --mode single_pass

Environment:
    EXAM_EXTRACTOR_API_KEYS: Comma-separated API keys (or GEMINI_API_KEY)
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from exam_extractor import ExtractionService, ExtractorConfig, ExtractionMode
from exam_extractor.logging_config import setup_logging


def progress_callback(current: int, total: int, status: str):
    """Print progress updates."""
    percent = (current / total * 100) if total > 0 else 0
    bar_len = 30
    filled = int(bar_len * current / total) if total > 0 else 0
    bar = '=' * filled + '-' * (bar_len - filled)
    print(f'\r[{bar}] {percent:5.1f}% - {status:<50}', end='', flush=True)
    if current == total:
        print()  # Newline when done


def document_callback(index: int, total: int, pdf_path: str):
    """Print a header line per document."""
    if index < total:
        print(f"\n[{index + 1}/{total}] {Path(pdf_path).name}")


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(
        description='Extract exam questions from scanned PDFs with a vision model',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Extract and write the result JSON to output/
  python scripts/extract_questions.py paper.pdf --year 2023 --course physics-101

  # Several papers, saving valid questions to the store
  python scripts/extract_questions.py p1.pdf p2.pdf --year 2023 --course physics-101 --save

  # One combined call per page instead of two passes
  python scripts/extract_questions.py paper.pdf --year 2023 --course physics-101 --mode single_pass
        """
    )

    parser.add_argument('pdf_paths', nargs='+', help='PDF files to process')
    parser.add_argument('--year', required=True, help='Exam year (2001-2029)')
    parser.add_argument('--course', required=True, help='Course identifier')
    parser.add_argument('--mode', choices=[m.value for m in ExtractionMode],
                        help='Extraction strategy (default: two_pass)')
    parser.add_argument('--save', action='store_true',
                        help='Save valid questions to the question store')
    parser.add_argument('-o', '--output', default='output',
                        help='Output directory (default: output)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose output')

    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    logger = logging.getLogger("exam_extractor.scripts")

    config = ExtractorConfig.from_env()
    if args.mode:
        config.extraction = config.extraction.model_copy(update={"mode": ExtractionMode(args.mode)})

    if not config.api_keys:
        logger.error("No API key provided. Set EXAM_EXTRACTOR_API_KEYS or GEMINI_API_KEY")
        sys.exit(1)

    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    service = ExtractionService(config=config)

    print(f"\n{'='*60}")
    print("Exam Question Extractor")
    print(f"{'='*60}")
    print(f"Documents: {len(args.pdf_paths)}")
    print(f"Model: {config.extraction.model}")
    print(f"Mode: {config.extraction.mode.value}")
    print(f"API keys: {len(config.api_keys)}")
    print(f"{'='*60}\n")

    outcomes = asyncio.run(service.extract_batch(
        args.pdf_paths,
        course_id=args.course,
        year=args.year,
        auto_save=args.save,
        progress_callback=progress_callback,
        document_callback=document_callback,
    ))

    total_questions = 0
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    for outcome in outcomes:
        name = Path(outcome.pdf_path).name
        if outcome.result is None:
            print(f"\n{name}: FAILED - {outcome.error}")
            continue

        result = outcome.result
        stats = result.get_statistics()
        total_questions += result.total_questions

        print(f"\n{name}:")
        print(f"  Questions: {stats['total_questions']} on {stats['total_pages']} pages")
        for question_type, count in stats['questions_by_type'].items():
            if count:
                print(f"  - {question_type}: {count}")
        if stats['failed_pages']:
            print(f"  Failed pages: {stats['failed_pages']}")
        print(f"  Tokens used: {result.total_input_tokens:,} input, {result.total_output_tokens:,} output")
        if args.save:
            print(f"  Saved: {outcome.saved}")
        if outcome.error:
            print(f"  Error: {outcome.error}")

        result_path = output_dir / f"{Path(outcome.pdf_path).stem}_{timestamp}_questions.json"
        result.save(str(result_path))
        print(f"  Result: {result_path}")

    print(f"\n{'='*60}")
    print(f"Done! {total_questions} question(s) from {len(outcomes)} document(s)")
    print(f"{'='*60}\n")

    if not any(outcome.succeeded for outcome in outcomes):
        sys.exit(1)


if __name__ == '__main__':
    main()
