import os
import argparse
import dataclasses
import logging
import time

from notescan.config import CONFIG
from notescan.export import (
    write_classification_json,
    write_delivery_workbook,
    write_manifest_csv,
    write_manifest_xlsx,
    write_manual_review,
    write_summary_csv,
)
from notescan.processing_pipeline import MODE_CR, MODE_DELIVERY, BatchProcessor, DocumentProcessor

logger = logging.getLogger(__name__)


def build_config(args):
    """CONFIG with command line overrides applied."""
    verification = CONFIG.verification
    if args.blue_threshold is not None:
        verification = dataclasses.replace(verification, blue_threshold=args.blue_threshold)
    if args.signature_threshold is not None:
        verification = dataclasses.replace(verification, very_dark_threshold=args.signature_threshold)

    overrides = {"verification": verification}
    if args.workers is not None:
        overrides["max_workers"] = args.workers
    return dataclasses.replace(CONFIG, **overrides)


def write_cr_outputs(results, output_dir):
    entries = [e for r in results for e in r.entries]
    write_manifest_csv(entries, os.path.join(output_dir, "manifest.csv"))
    write_manifest_xlsx(entries, os.path.join(output_dir, "manifest.xlsx"))
    write_manual_review([m for r in results for m in r.review_messages],
                        os.path.join(output_dir, "manual_review.txt"))


def write_delivery_outputs(results, output_dir):
    for res in results:
        if res.classification is None:
            continue
        stem = os.path.splitext(res.input)[0]
        write_classification_json(res.classification, os.path.join(output_dir, stem + ".json"))
        if res.classification.accepted:
            write_delivery_workbook(res.classification.accepted, os.path.join(output_dir, stem + ".xlsx"))
        else:
            logger.warning("%s: no delivery notes accepted, no workbook written", res.input)
    write_summary_csv(results, os.path.join(output_dir, "summary.csv"))


def main():
    parser = argparse.ArgumentParser(description="Delivery note / confirmation of receipt extractor")
    parser.add_argument("--input_dir", type=str, default="input", help="Directory containing PDF documents")
    parser.add_argument("--output_dir", type=str, default="output", help="Directory for split PDFs and reports")
    parser.add_argument("--mode", choices=[MODE_CR, MODE_DELIVERY], default=MODE_CR,
                        help="cr: split by confirmation of receipt number; delivery: extract delivery notes")
    parser.add_argument("--workers", type=int, default=None,
                        help=f"Documents processed in parallel (default: {CONFIG.max_workers})")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING"], default="INFO",
                        help="Set logging verbosity (default: INFO)")
    parser.add_argument("--blue-threshold", type=float, default=None,
                        help=f"Blue ink density (%%) for a present stamp "
                             f"(default: {CONFIG.verification.blue_threshold})")
    parser.add_argument("--signature-threshold", type=float, default=None,
                        help=f"Black pen density (%%) for a present signature "
                             f"(default: {CONFIG.verification.very_dark_threshold})")
    parser.add_argument("--no-ocr", action="store_true", help="Use the PDF text layer only")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(name)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        force=True,
    )

    # Suppress noisy third-party loggers
    logging.getLogger("torch").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("pypdfium2").setLevel(logging.WARNING)

    if not os.path.exists(args.input_dir):
        logger.error("Input directory not found: %s", args.input_dir)
        return

    os.makedirs(args.output_dir, exist_ok=True)

    all_files = [f for f in os.listdir(args.input_dir) if os.path.isfile(os.path.join(args.input_dir, f))]
    files = sorted(f for f in all_files if f.lower().endswith(".pdf"))
    skipped = len(all_files) - len(files)
    if skipped:
        logger.info("Skipped %d non-PDF files (e.g. .gitkeep)", skipped)
    logger.info("Found %d PDF files in %s", len(files), args.input_dir)

    config = build_config(args)
    processor = DocumentProcessor(args.output_dir, config=config, use_ocr=not args.no_ocr)
    batch = BatchProcessor(processor, mode=args.mode)

    start_time = time.time()
    try:
        results = batch.run(os.path.join(args.input_dir, f) for f in files)
    finally:
        processor.close()

    if batch.interrupted:
        logger.warning("Interrupted, writing reports for %d of %d document(s)", len(results), len(files))

    if args.mode == MODE_DELIVERY:
        write_delivery_outputs(results, args.output_dir)
    else:
        write_cr_outputs(results, args.output_dir)

    logger.info("Processing complete in %.2fs. Results saved to %s", time.time() - start_time, args.output_dir)


if __name__ == "__main__":
    main()
