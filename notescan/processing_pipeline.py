"""
Per-document orchestration for both pipelines, and the batch pool.

CR mode:
    text layer (OCR fallback) → CR search per page → grouping →
    stamp/signature/date check on each group's last page → one PDF per CR.

Delivery mode:
    text layer (OCR fallback) → candidate extraction → classification.

Every document is processed inside its own DocumentContext; the only state
shared between worker threads is the OCR engine and the pdfium lock.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from langdetect import DetectorFactory, LangDetectException, detect
from PIL import Image

from notescan.config import CONFIG, PipelineConfig
from notescan.extraction import (
    choose_valid_matches,
    extract_candidates,
    find_identifiers,
    group_pages,
    validate_delivery_notes,
)
from notescan.models.base import OcrEngine, call_with_timeout
from notescan.records import (
    ClassificationResult,
    ManifestEntry,
    OverallStatus,
    PageGroup,
    PageRecord,
    REVIEW_STATUSES,
    RegionVerification,
)
from notescan.utils.pdf import PdfSource, split_text_items
from notescan.utils.verification import analyze_region

logger = logging.getLogger(__name__)

# langdetect is non-deterministic unless seeded
DetectorFactory.seed = 0

MODE_CR = "cr"
MODE_DELIVERY = "delivery"


class DocumentProcessingError(RuntimeError):
    """A document (or one of its groups) could not be read, rendered or written."""


@dataclass
class DocumentContext:
    """Mutable state of one document while it moves through the pipeline."""
    source: PdfSource
    output_dir: Path
    pages: List[PageRecord] = field(default_factory=list)
    entries: List[ManifestEntry] = field(default_factory=list)
    review_messages: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def total_pages(self) -> int:
        return self.source.page_count


@dataclass
class DocumentResult:
    input: str
    total_pages: int
    entries: List[ManifestEntry] = field(default_factory=list)
    review_messages: List[str] = field(default_factory=list)
    classification: Optional[ClassificationResult] = None
    error: Optional[str] = None
    elapsed_s: float = 0.0


def format_verification_message(file_name: str, page_range: str, identifier: str,
                                verification: RegionVerification) -> str:
    """One manual-review line for a group whose status needs attention."""
    msg = f"{file_name} p.{page_range} ({identifier}): "
    status = verification.overall_status

    if status is OverallStatus.STAMP_MISSING:
        return msg + "Stamp MISSING - please verify stamp is applied"
    if status is OverallStatus.SIGNATURE_MISSING:
        return msg + "Signature MISSING - please verify document is signed"
    if status is OverallStatus.BOTH_MISSING:
        return msg + "Both stamp AND signature MISSING - document incomplete"
    if status is OverallStatus.DATE_MISSING:
        return msg + "Date MISSING - stamp & signature OK but date field empty"
    if status is OverallStatus.NEEDS_REVIEW:
        return msg + (f"Manual check needed (Stamp: {verification.stamp_status.value}, "
                      f"Sig: {verification.signature_status.value})")
    return msg + verification.summary


class DocumentProcessor:
    def __init__(self, output_dir, config: PipelineConfig = CONFIG,
                 ocr_engine: Optional[OcrEngine] = None, use_ocr: bool = True,
                 source_factory: Callable[..., PdfSource] = PdfSource):
        self.output_dir = Path(output_dir)
        self.config = config
        self.use_ocr = use_ocr
        self.source_factory = source_factory
        self._ocr_engine = ocr_engine
        self._ocr_lock = threading.Lock()
        self._region_pool = None
        if config.region_workers > 1:
            self._region_pool = ThreadPoolExecutor(max_workers=config.region_workers,
                                                   thread_name_prefix="notescan-region")
        self._slow_pool = ThreadPoolExecutor(max_workers=config.slow_call_workers,
                                             thread_name_prefix="notescan-slow")
        # Timed-out calls still running against a source, keyed by id(source)
        self._abandoned: Dict[int, List[Future]] = {}
        self._abandoned_lock = threading.Lock()

    @property
    def ocr_engine(self) -> OcrEngine:
        """The OCR engine, created on first use so text-only runs never load models."""
        with self._ocr_lock:
            if self._ocr_engine is None:
                from notescan.models.ocr import SuryaOcrEngine
                self._ocr_engine = SuryaOcrEngine()
            return self._ocr_engine

    def close(self) -> None:
        if self._region_pool is not None:
            self._region_pool.shutdown(wait=True)
        # Hung OCR/render calls must not block exit
        self._slow_pool.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Timed calls
    # ------------------------------------------------------------------

    def _timed_call(self, source: PdfSource, fn, timeout_s: float, *args, default=None, label="call"):
        with self._abandoned_lock:
            abandoned = self._abandoned.setdefault(id(source), [])
        return call_with_timeout(self._slow_pool, fn, timeout_s, *args,
                                 default=default, label=label, abandoned=abandoned)

    def _close_source(self, source: PdfSource) -> None:
        """Close now, or once the last timed-out call on this source returns."""
        with self._abandoned_lock:
            pending = [f for f in self._abandoned.pop(id(source), []) if not f.done()]
        if not pending:
            source.close()
            return

        logger.warning("%s: %d timed-out call(s) still running, closing when they finish",
                       source.name, len(pending))
        remaining = [len(pending)]
        lock = threading.Lock()

        def _on_done(_future):
            with lock:
                remaining[0] -= 1
                last = remaining[0] == 0
            if last:
                source.close()

        for future in pending:
            future.add_done_callback(_on_done)

    # ------------------------------------------------------------------
    # Page text
    # ------------------------------------------------------------------

    def detect_language(self, text: str) -> str:
        """Detect language of text, defaulting to English."""
        try:
            if text and len(text.strip()) > 20:
                return detect(text)
        except LangDetectException:
            pass
        return "en"

    def _ocr_page(self, source: PdfSource, page_index: int) -> str:
        image = source.render_page(page_index, self.config.render_scale)
        return self.ocr_engine.recognize(image)

    def read_page(self, source: PdfSource, page_index: int):
        """
        Text of one page, OCR'd when the text layer is (nearly) empty.

        Returns:
            (text, used_ocr); text is '' when OCR fails or times out.  OCR
            text is returned raw; the CR search and the delivery tokenizer
            repair split digit groups themselves.
        """
        text = source.page_text(page_index)
        if len(text.strip()) >= self.config.min_text_chars or not self.use_ocr:
            return text, False

        logger.info("%s page %d: low text, running OCR...", source.name, page_index + 1)
        ocr_text = self._timed_call(source, self._ocr_page, self.config.ocr_timeout_s,
                                    source, page_index, default="",
                                    label=f"OCR of {source.name} page {page_index + 1}")
        return ocr_text or "", True

    def _render(self, source: PdfSource, page_index: int) -> Image.Image:
        image = self._timed_call(source, source.render_page, self.config.render_timeout_s,
                                 page_index, self.config.render_scale,
                                 label=f"Render of {source.name} page {page_index + 1}")
        if image is None:
            raise DocumentProcessingError(f"Rendering page {page_index + 1} timed out")
        return image

    # ------------------------------------------------------------------
    # CR pipeline
    # ------------------------------------------------------------------

    def extract_pages(self, ctx: DocumentContext) -> List[PageRecord]:
        """Read every page and attach its CR match (if exactly one survives)."""
        for page_index in range(ctx.total_pages):
            text, used_ocr = self.read_page(ctx.source, page_index)
            candidates = choose_valid_matches(find_identifiers(text))
            page = PageRecord(
                page_index=page_index,
                page_num=page_index + 1,
                extracted_text=text,
                used_ocr=used_ocr,
                match=candidates[0] if len(candidates) == 1 else None,
                language=self.detect_language(text),
            )
            ctx.pages.append(page)
            logger.info("%s page %d: %s [%s] | CR: %s", ctx.name, page.page_num,
                        'OCR' if used_ocr else 'text', page.language,
                        ", ".join(f"{c.value} ({c.confidence.value})" for c in candidates) or 'none')
        return ctx.pages

    def process_cr_document(self, path) -> DocumentResult:
        start = time.time()
        source = self.source_factory(path)
        try:
            ctx = DocumentContext(source=source, output_dir=self.output_dir / Path(path).stem)
            logger.info("Processing %s: %d page(s)", ctx.name, ctx.total_pages)
            self.extract_pages(ctx)

            if source.has_digital_signature():
                logger.warning("%s: digital signature detected, preserving original bytes", ctx.name)
                self._handle_signed(ctx)
            else:
                groups = group_pages(ctx.pages, self.config.orphan_lookahead)
                logger.info("%s: found %d CR group(s)", ctx.name, len(groups))
                self._process_groups(ctx, groups)

            if not ctx.entries:
                ctx.entries.append(ManifestEntry(
                    input=ctx.name,
                    total_pages=ctx.total_pages,
                    output_file=None,
                    identifier=None,
                    type=None,
                    status=OverallStatus.NO_CR_FOUND.value,
                    pages=f"1-{ctx.total_pages}",
                    notes="No valid confirmation numbers found",
                ))
        finally:
            self._close_source(source)

        elapsed = time.time() - start
        logger.info("%s completed in %.2fs", ctx.name, elapsed)
        return DocumentResult(input=ctx.name, total_pages=ctx.total_pages, entries=ctx.entries,
                              review_messages=ctx.review_messages, elapsed_s=elapsed)

    def _verify_group(self, ctx: DocumentContext, group: PageGroup) -> RegionVerification:
        image = self._render(ctx.source, group.representative_page.page_index)
        return analyze_region(image, cfg=self.config.verification)

    def _process_groups(self, ctx: DocumentContext, groups: Sequence[PageGroup]) -> None:
        if self._region_pool is not None:
            futures = [self._region_pool.submit(self._verify_group, ctx, g) for g in groups]
            outcomes = [f.result for f in futures]
        else:
            outcomes = [(lambda g=g: self._verify_group(ctx, g)) for g in groups]

        for group, outcome in zip(groups, outcomes):
            try:
                verification = outcome()
                self._write_group(ctx, group, verification)
            except Exception as e:
                logger.error("%s: error processing CR %s: %s", ctx.name, group.identifier_value, e,
                             exc_info=True)
                ctx.entries.append(ManifestEntry(
                    input=ctx.name,
                    total_pages=ctx.total_pages,
                    output_file=None,
                    identifier=group.identifier_value,
                    type=group.type.value if group.type else None,
                    status=OverallStatus.ERROR.value,
                    pages=group.page_range,
                    notes=str(e),
                ))

    def _write_group(self, ctx: DocumentContext, group: PageGroup,
                     verification: RegionVerification) -> None:
        logger.info("%s CR %s: %s (pages: %s)", ctx.name, group.identifier_value,
                    verification.summary, group.page_range)

        out_path = ctx.output_dir / f"{group.identifier_value}.pdf"
        ctx.source.write_pages([p.page_index for p in group.pages], out_path)

        if verification.overall_status in REVIEW_STATUSES:
            ctx.review_messages.append(format_verification_message(
                ctx.name, group.page_range, group.identifier_value, verification))

        ctx.entries.append(ManifestEntry(
            input=ctx.name,
            total_pages=ctx.total_pages,
            output_file=self._relative(out_path),
            identifier=group.identifier_value,
            type=group.type.value if group.type else None,
            status=verification.overall_status.value,
            stamp_status=verification.stamp_status.value,
            signature_status=verification.signature_status.value,
            pages=group.page_range,
            notes=verification.summary,
        ))

    def _handle_signed(self, ctx: DocumentContext) -> None:
        """
        Digitally signed PDFs are copied byte for byte; splitting them would
        invalidate the signature.  No stamp/signature check is done.
        """
        found: Dict[str, PageRecord] = {}
        for page in ctx.pages:
            if page.identifier and page.identifier not in found:
                found[page.identifier] = page

        identifier, id_type = None, None
        if found:
            first = next(iter(found.values()))
            identifier, id_type = first.identifier, first.identifier_type
        else:
            combined = " ".join(p.extracted_text for p in ctx.pages)
            matches = find_identifiers(combined)
            if matches:
                identifier, id_type = matches[0].value, matches[0].type

        if identifier:
            out_path = ctx.source.copy_original(ctx.output_dir / f"{identifier}.pdf")
            logger.info("Preserved digitally signed PDF as %s (%d pages)", out_path.name, ctx.total_pages)
            status = OverallStatus.DIGITAL_SIGNATURE_VALID
            notes = "Digital signature preserved - original PDF bytes unchanged"
        else:
            out_path = ctx.source.copy_original(ctx.output_dir / f"{Path(ctx.name).stem}_signed.pdf")
            logger.warning("%s: signed PDF but no CR found, preserving as-is", ctx.name)
            status = OverallStatus.DIGITAL_SIG_NO_CR
            notes = "Digital signature preserved but CR not detected"
            ctx.review_messages.append(
                f"{ctx.name}: Digital signature valid but CR number not detected - please verify CR manually")

        ctx.entries.append(ManifestEntry(
            input=ctx.name,
            total_pages=ctx.total_pages,
            output_file=self._relative(out_path),
            identifier=identifier,
            type=id_type.value if id_type else None,
            status=status.value,
            stamp_status="N/A",
            signature_status="DIGITAL",
            pages=f"1-{ctx.total_pages}",
            notes=notes,
        ))

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.output_dir).as_posix()
        except ValueError:
            return str(path)

    # ------------------------------------------------------------------
    # Delivery note pipeline
    # ------------------------------------------------------------------

    def process_delivery_document(self, path) -> DocumentResult:
        start = time.time()
        source = self.source_factory(path)
        try:
            items = []
            used_ocr = False
            for page_index in range(source.page_count):
                text, page_ocr = self.read_page(source, page_index)
                used_ocr = used_ocr or page_ocr
                items.extend(split_text_items(text, page_index))
            name, total_pages = source.name, source.page_count
        finally:
            self._close_source(source)

        extraction = extract_candidates(items, self.config, ocr_tolerant=used_ocr)
        result = validate_delivery_notes(extraction, self.config)
        elapsed = time.time() - start
        logger.info("%s: %d accepted, %d excluded, %d invalid, %d corrected (%.2fs)",
                    name, len(result.accepted), len(result.excluded), len(result.invalid),
                    len(result.auto_corrections), elapsed)
        return DocumentResult(input=name, total_pages=total_pages,
                              classification=result, elapsed_s=elapsed)


class BatchProcessor:
    """Runs documents concurrently; one failing document never stops the batch."""

    def __init__(self, processor: DocumentProcessor, mode: str = MODE_CR,
                 max_workers: Optional[int] = None):
        if mode not in (MODE_CR, MODE_DELIVERY):
            raise ValueError(f"Unknown mode: {mode}")
        self.processor = processor
        self.mode = mode
        self.max_workers = max_workers or processor.config.max_workers
        self.cancel_event = threading.Event()
        self.interrupted = False

    def cancel(self) -> None:
        """Stop before the next document; documents already running finish."""
        self.cancel_event.set()

    def _process_one(self, path) -> Optional[DocumentResult]:
        if self.cancel_event.is_set():
            logger.info("Cancelled, skipping %s", Path(path).name)
            return None
        try:
            if self.mode == MODE_DELIVERY:
                return self.processor.process_delivery_document(path)
            return self.processor.process_cr_document(path)
        except Exception as e:
            logger.error("Error processing %s: %s", Path(path).name, e, exc_info=True)
            return DocumentResult(
                input=Path(path).name,
                total_pages=0,
                entries=[ManifestEntry(
                    input=Path(path).name,
                    total_pages=0,
                    output_file=None,
                    identifier=None,
                    type=None,
                    status=OverallStatus.ERROR.value,
                    notes=str(e),
                )],
                error=str(e),
            )

    def run(self, paths) -> List[DocumentResult]:
        """
        Process all documents.

        Ctrl-C while waiting cancels the documents not yet started, lets the
        running ones finish and sets ``interrupted``; the results gathered so
        far are still returned.

        Returns:
            One DocumentResult per processed document, in input order
            (cancelled documents are left out)
        """
        paths = list(paths)
        with ThreadPoolExecutor(max_workers=self.max_workers,
                                thread_name_prefix="notescan-doc") as pool:
            futures = [pool.submit(self._process_one, p) for p in paths]
            try:
                wait(futures)
            except KeyboardInterrupt:
                logger.warning("Interrupted, finishing documents already running")
                self.interrupted = True
                self.cancel()
        results = [f.result() for f in futures]
        return [r for r in results if r is not None]
