import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

from .api_client import VisionModelClient
from .config import ExtractorConfig
from .exceptions import StorageError
from .models import ExtractionResult, StoredQuestion
from .passes import ModelClient
from .pdf_utils import PDFRenderer
from .pipeline import ExtractionPipeline
from .storage import ExtractionStorage, QuestionStore


logger = logging.getLogger(__name__)


@dataclass
class DocumentOutcome:
    """What happened to one document of a batch."""

    pdf_path: str
    result: Optional[ExtractionResult] = None
    saved: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.error is None


class ExtractionService:
    def __init__(
        self,
        config: ExtractorConfig | None = None,
        client: ModelClient | None = None,
        renderer: PDFRenderer | None = None,
    ):
        self.config = config or ExtractorConfig.from_env()
        self.storage = ExtractionStorage(self.config.data_dir)
        self.question_store = QuestionStore(self.config.data_dir)
        self._client = client
        self._renderer = renderer
        self._pipeline: Optional[ExtractionPipeline] = None

    @property
    def pipeline(self) -> ExtractionPipeline:
        """Built on first use; raises NoCredentialsError without API keys."""
        if self._pipeline is None:
            client = self._client or VisionModelClient(
                model=self.config.extraction.model,
                base_url=self.config.base_url,
                settings=self.config.extraction.generation,
            )
            self._pipeline = ExtractionPipeline(
                pool=self.config.create_pool(),
                client=client,
                config=self.config.extraction,
                renderer=self._renderer,
            )
        return self._pipeline

    async def extract(
        self,
        pdf_path: str,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> ExtractionResult:
        return await self.pipeline.extract_document(pdf_path, progress_callback=progress_callback)

    async def extract_and_save(
        self,
        pdf_path: str,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> tuple[ExtractionResult, str, str]:
        result = await self.extract(pdf_path, progress_callback=progress_callback)
        paths = self.storage.save(result)
        return result, paths.document_id, str(paths.extraction_file)

    def save_questions(
        self,
        result: ExtractionResult,
        course_id: str,
        year: Union[int, str],
    ) -> list[StoredQuestion]:
        return self.question_store.save_questions(result.questions, course_id=course_id, year=year)

    async def extract_batch(
        self,
        pdf_paths: Sequence[str],
        course_id: Optional[str] = None,
        year: Union[int, str, None] = None,
        auto_save: bool = False,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
        document_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> list[DocumentOutcome]:
        """
        Extract several documents one after another.

        A document that fails (unreadable PDF, unexpected error) is reported
        in its outcome and the batch moves on. With auto_save, each
        document's questions are saved as soon as it finishes.

        Args:
            progress_callback: Per-page callback(current_page, total_pages, status),
                restarted for every document
            document_callback: Per-document callback(index, total_documents, pdf_path)
                before each document, then (total, total, "Complete")
        """
        total = len(pdf_paths)
        outcomes = []
        for index, pdf_path in enumerate(pdf_paths):
            outcome = DocumentOutcome(pdf_path=str(pdf_path))
            logger.info(f"Document {index + 1}/{total}: {pdf_path}")
            if document_callback:
                document_callback(index, total, str(pdf_path))

            try:
                outcome.result = await self.extract(pdf_path, progress_callback=progress_callback)
            except Exception as e:
                logger.error(f"Document {pdf_path} failed: {e}")
                outcome.error = str(e)

            if auto_save and outcome.result is not None:
                if outcome.result.questions:
                    try:
                        outcome.saved = len(self.save_questions(outcome.result, course_id, year))
                    except StorageError as e:
                        logger.error(f"Saving questions from {pdf_path} failed: {e}")
                        outcome.error = str(e)
                else:
                    logger.warning(f"No questions found in {pdf_path}, nothing saved")

            outcomes.append(outcome)

            delay = self.config.extraction.document_delay_seconds
            if index < total - 1 and delay > 0:
                await asyncio.sleep(delay)

        if document_callback:
            document_callback(total, total, "Complete")

        return outcomes
