# run_collector.py
import asyncio
import argparse
import logging
import sys
from pathlib import Path

# Import RichHandler here for centralized logging
from rich.logging import RichHandler

from pharmacity_collector.config import CollectorConfig
from pharmacity_collector.errors import ConfigError
from pharmacity_collector.main import main as run_pipeline


def configure_logging(verbose: bool, log_file: Path):
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(levelname)-8s - %(name)-25s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)  # Everything goes to the file
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    rich_handler = RichHandler(
        level=logging.DEBUG if verbose else logging.INFO,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=True,
    )
    root_logger.addHandler(rich_handler)

    # httpx logs every request at INFO, which drowns the pipeline output.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Collect Pharmacity product data, images and OCR bounding boxes.",
        formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument(
        '--steps',
        nargs='+',
        type=int,
        choices=[1, 2, 3],
        default=[1, 2, 3],
        help="""Specify which pipeline steps to run.
    1: Generate search keywords with the language model
    2: Search, scrape, download images, enrich and save products
    3: Categorize products and write the complete dataset
Example: python run_collector.py --steps 2 3
"""
    )
    parser.add_argument('--search-only', action='store_true',
                        help="Only run the searches and save their results; no scraping.")
    parser.add_argument('--keywords', nargs='+', default=None,
                        help="Seed keywords to use instead of the built-in list.")
    parser.add_argument('--max-products', type=int, default=None,
                        help="Maximum products to request per keyword.")
    parser.add_argument('--output', type=Path, default=None,
                        help="Output directory (default: ./data).")
    parser.add_argument('--ocr-backend', choices=["ocrspace", "tesseract"], default=None,
                        help="OCR engine for bounding-box inference.")
    parser.add_argument('--no-compress', action='store_true',
                        help="Keep downloaded images as they are.")
    parser.add_argument('--quality', type=int, default=None,
                        help="JPEG quality used when compressing images (1-100).")
    parser.add_argument('--no-llm-ocr', action='store_true',
                        help="Skip the language-model drug-name analysis of OCR text.")
    parser.add_argument('--actual-image-size', action='store_true',
                        help="Normalize boxes against the real image size instead of 1000x1000.")
    parser.add_argument('--seed', type=int, default=None,
                        help="Random seed for the category sample.")
    parser.add_argument('--log-file', type=Path, default=Path("collector.log"),
                        help="Where to write the full debug log.")
    parser.add_argument('--verbose', action='store_true', help="Show debug output on the console.")
    return parser


if __name__ == "__main__":
    args = build_parser().parse_args()
    configure_logging(args.verbose, args.log_file)

    try:
        config = CollectorConfig.from_env(
            seed_keywords=args.keywords,
            max_products_per_keyword=args.max_products,
            output_dir=args.output,
            ocr_backend=args.ocr_backend,
            compression_enabled=False if args.no_compress else None,
            compression_quality=args.quality,
            use_llm_drug_analysis=False if args.no_llm_ocr else None,
            use_actual_image_size=True if args.actual_image_size else None,
            random_seed=args.seed,
        )
    except ConfigError as e:
        logging.critical("%s", e)
        sys.exit(1)

    logging.info("=" * 60)
    logging.info("Pharmacity Data Collection Starting...")
    logging.info("Running steps: %s%s", args.steps, " (search only)" if args.search_only else "")
    logging.info("=" * 60)

    try:
        asyncio.run(run_pipeline(steps_to_run=args.steps, config=config, search_only=args.search_only))
    except KeyboardInterrupt:
        logging.warning("Pipeline interrupted by user.")
    except Exception as e:
        logging.critical("An unexpected error occurred: %s", e, exc_info=True)
        sys.exit(1)
    finally:
        logging.info("=" * 60)
        logging.info("Pipeline execution finished.")
