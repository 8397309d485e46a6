"""
Extraction Pipeline - Main Processing Engine

Sequences page images through the model passes:

    two_pass:    structure(page 1..N)  →  extraction(page 1..N)
    single_pass: extraction(page 1..N) with rolling page memory

Pages are strictly sequential: later pages depend on shared descriptions,
memory and recent questions produced by earlier ones, and all calls share
one rate-limited credential pool. A failed page is recorded in the result
and contributes no questions; the run always completes.

Usage:
    from exam_extractor import CredentialPool, ExtractionPipeline

    pipeline = ExtractionPipeline(CredentialPool(["key-a", "key-b"]))
    result = asyncio.run(pipeline.extract_document("paper_2023.pdf"))
    result.save("paper_2023.json")
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from .api_client import RateLimitedExecutor, TokenUsage, VisionModelClient
from .credentials import CredentialPool
from .exceptions import PageExtractionError, format_error_chain
from .models import (
    ExtractedQuestion,
    ExtractionConfig,
    ExtractionMode,
    ExtractionResult,
    PageStructuralFindings,
    SharedDescription,
)
from .passes import (
    ContextualExtractionPass,
    ModelClient,
    SinglePassExtractor,
    StructuralPass,
    active_shared_descriptions,
)
from .pdf_utils import PageImage, PDFRenderer


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class ExtractionPipeline:
    """
    Page-by-page question extraction over a credential pool.

    Features:
    - Two-pass (structure, then extraction) or single-pass strategy
    - Credential failover through one RateLimitedExecutor
    - Fixed pacing between calls, none after the last page
    - Per-page failure isolation
    """

    def __init__(
        self,
        pool: CredentialPool,
        client: Optional[ModelClient] = None,
        config: Optional[ExtractionConfig] = None,
        renderer: Optional[PDFRenderer] = None,
    ):
        """
        Args:
            pool: Credentials shared by every call of this pipeline
            client: Model client (defaults to VisionModelClient for config.model)
            config: Pipeline configuration
            renderer: Rasterizer used by extract_document
        """
        self.config = config or ExtractionConfig()
        self.pool = pool
        self.client = client or VisionModelClient(
            model=self.config.model,
            settings=self.config.generation,
        )
        self.renderer = renderer or PDFRenderer()
        self.executor = RateLimitedExecutor(pool, self.config.rate_limit_backoff_seconds)

        self.structural_pass = StructuralPass(self.client, self.executor, self.config.generation)
        self.contextual_pass = ContextualExtractionPass(self.client, self.executor, self.config)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def extract_document(
        self,
        pdf_path: Union[str, Path],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ExtractionResult:
        """
        Rasterize a PDF and run the pipeline over its pages.

        Raises:
            PDFNotFoundError: If the file doesn't exist
            PDFCorruptedError: If the file can't be opened
        """
        pdf_path = Path(pdf_path)
        logger.info(f"Starting document extraction: {pdf_path}")

        images = self.renderer.render_document(pdf_path)
        logger.info(f"Document has {len(images)} pages")

        return await self.run(
            images,
            progress_callback=progress_callback,
            source_file=str(pdf_path),
        )

    async def run(
        self,
        images: Sequence[Union[PageImage, str]],
        start_page: int = 1,
        progress_callback: Optional[ProgressCallback] = None,
        source_file: str = "<images>",
    ) -> ExtractionResult:
        """
        Extract questions from page images in order.

        Args:
            images: Page images (PageImage or base64 strings), in page order
            start_page: Page number of the first image
            progress_callback: Optional callback(current_page, total_pages, status)
            source_file: Label stored in the result

        Returns:
            ExtractionResult with questions ordered by page, then extraction order

        Raises:
            ValueError: If start_page is below 1
        """
        if start_page < 1:
            raise ValueError(f"start_page must be at least 1, got {start_page}")

        start_time = time.time()
        pages = self._number_pages(images, start_page)
        result = ExtractionResult(
            source_file=source_file,
            mode=self.config.mode,
            total_pages=len(pages),
        )
        usage_before = self._usage_snapshot()

        if not pages:
            result.warnings.append("No pages to process")
            return result

        logger.info(f"Extracting {len(pages)} page(s) from {source_file} ({self.config.mode.value})")

        if self.config.mode == ExtractionMode.SINGLE_PASS:
            await self._run_single_pass(pages, result, progress_callback)
        else:
            await self._run_two_pass(pages, result, progress_callback)

        if progress_callback:
            progress_callback(len(pages), len(pages), "Complete")

        usage_after = self._usage_snapshot()
        if usage_before is not None and usage_after is not None:
            result.total_input_tokens = usage_after.input_tokens - usage_before.input_tokens
            result.total_output_tokens = usage_after.output_tokens - usage_before.output_tokens

        result.processing_time_seconds = time.time() - start_time

        if result.page_errors:
            logger.warning(f"Failed pages: {sorted(result.page_errors)}")
        logger.info(
            f"Extraction complete in {result.processing_time_seconds:.1f}s: "
            f"{result.total_questions} question(s)"
        )
        return result

    # =========================================================================
    # STRATEGIES
    # =========================================================================

    async def _run_two_pass(
        self,
        pages: list[PageImage],
        result: ExtractionResult,
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        total = len(pages)
        findings_by_page: dict[int, PageStructuralFindings] = {}
        descriptions: dict[int, SharedDescription] = {}

        # Pass 1: structure of every page
        for index, image in enumerate(pages):
            page_number = image.page_number
            if progress_callback:
                progress_callback(index, total, f"Analyzing structure of page {page_number}...")

            try:
                findings = await self.structural_pass.analyze(image)
            except Exception as e:
                self._record_failure(result, PageExtractionError(page_number, "structure", e), fatal=False)
                findings = PageStructuralFindings.empty(page_number)

            findings_by_page[page_number] = findings
            await self._pace(index, total, self.config.structural_delay_seconds)

        result.structural_findings = [findings_by_page[image.page_number] for image in pages]

        # A "following N questions" description may run onto the next page
        ordered = result.structural_findings
        for findings, next_findings in zip(ordered, ordered[1:] + [None]):
            description = SharedDescription.from_findings(findings, next_findings)
            if description:
                descriptions[findings.page_number] = description
                logger.info(
                    f"Page {findings.page_number}: shared description for questions "
                    f"{description.question_numbers}"
                )

        # Pass 2: extraction with structural context
        extracted_numbers: set[int] = set()
        for index, image in enumerate(pages):
            page_number = image.page_number
            if progress_callback:
                progress_callback(index, total, f"Extracting questions from page {page_number}...")

            active = active_shared_descriptions(descriptions, page_number, extracted_numbers)
            try:
                questions = await self.contextual_pass.extract(
                    image,
                    shared_descriptions=active,
                    findings=findings_by_page.get(page_number),
                    previous_questions=result.questions,
                )
            except Exception as e:
                self._record_failure(result, PageExtractionError(page_number, "extraction", e))
                questions = []

            self._accept(result, page_number, questions)
            extracted_numbers.update(q.base_number for q in questions if q.base_number is not None)

            await self._pace(index, total, self.config.extraction_delay_seconds)

    async def _run_single_pass(
        self,
        pages: list[PageImage],
        result: ExtractionResult,
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        total = len(pages)
        extractor = SinglePassExtractor(self.client, self.executor, self.config)

        for index, image in enumerate(pages):
            page_number = image.page_number
            if progress_callback:
                progress_callback(index, total, f"Extracting questions from page {page_number}...")

            try:
                questions = await extractor.extract(image, previous_questions=result.questions)
            except Exception as e:
                self._record_failure(result, PageExtractionError(page_number, "extraction", e))
                questions = []

            self._accept(result, page_number, questions)
            await self._pace(index, total, self.config.extraction_delay_seconds)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _number_pages(images: Sequence[Union[PageImage, str]], start_page: int) -> list[PageImage]:
        pages = []
        for offset, image in enumerate(images):
            page_number = start_page + offset
            if isinstance(image, str):
                image = PageImage.from_base64(image, page_number)
            elif image.page_number != page_number:
                image = dataclasses.replace(image, page_number=page_number)
            pages.append(image)
        return pages

    @staticmethod
    def _accept(result: ExtractionResult, page_number: int, questions: list[ExtractedQuestion]) -> None:
        if questions:
            logger.info(f"Page {page_number}: {len(questions)} question(s)")
        else:
            logger.info(f"Page {page_number}: no questions")
        result.questions.extend(questions)

    @staticmethod
    def _record_failure(result: ExtractionResult, error: PageExtractionError, fatal: bool = True) -> None:
        """
        Log a page failure and store it in the result.

        fatal marks failures that cost the page its questions; those also
        go into page_errors.
        """
        logger.error(f"{error.message}:\n{format_error_chain(error.original_error or error)}")
        message = f"Page {error.page_number} ({error.stage}): {error.details or error.message}"
        result.errors.append(message)
        if fatal:
            result.page_errors[error.page_number] = error.details or error.message

    @staticmethod
    async def _pace(index: int, total: int, delay: float) -> None:
        if index < total - 1 and delay > 0:
            await asyncio.sleep(delay)

    def _usage_snapshot(self) -> Optional[TokenUsage]:
        usage = getattr(self.client, "usage", None)
        return usage.snapshot() if isinstance(usage, TokenUsage) else None
