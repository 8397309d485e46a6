"""
Per-page model passes.

- StructuralPass: shared descriptions, multi-page signals, visible numbers
- ContextualExtractionPass: final records using structural context (two-pass)
- SinglePassExtractor: one combined call per page with rolling page memory

Both extractors are PageExtractor strategies: same executor, same decoder,
same shared-description inlining. Every model call goes through the
RateLimitedExecutor, so credential failover is handled in one place.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional, Protocol, Sequence

from .api_client import RateLimitedExecutor
from .decoder import decode_questions, decode_structure
from .models import (
    ExtractedQuestion,
    ExtractionConfig,
    GenerationSettings,
    PageMemory,
    PageStructuralFindings,
    RecentQuestionWindow,
    SharedDescription,
)
from .pdf_utils import PageImage
from .prompts import get_contextual_extraction_prompt, get_single_pass_prompt, get_structure_prompt


logger = logging.getLogger(__name__)


class ModelClient(Protocol):
    async def generate(
        self,
        credential: str,
        prompt: str,
        image: PageImage,
        settings: Optional[GenerationSettings] = None,
    ) -> str: ...


# =============================================================================
# SHARED DESCRIPTIONS
# =============================================================================


def active_shared_descriptions(
    descriptions: Mapping[int, SharedDescription],
    page_number: int,
    extracted_numbers: set[int],
) -> list[SharedDescription]:
    """
    Descriptions that apply to a page, in page order.

    A page gets its own description, plus descriptions from earlier pages
    whose question range still has unextracted questions.
    """
    active = []
    for source_page in sorted(descriptions):
        if source_page > page_number:
            break
        description = descriptions[source_page]
        if source_page == page_number or description.is_open(extracted_numbers):
            active.append(description)
    return active


def inline_shared_descriptions(
    questions: Iterable[ExtractedQuestion],
    descriptions: Sequence[SharedDescription],
) -> list[ExtractedQuestion]:
    """
    Prepend each applicable description to statements that lack it.

    Returns new records; the inputs are left untouched.
    """
    result = []
    for question in questions:
        missing = [
            d.text for d in descriptions
            if d.applies_to(question) and d.text not in question.question_statement
        ]
        if missing:
            statement = "\n\n".join(missing + [question.question_statement]).strip()
            question = question.model_copy(update={"question_statement": statement})
        result.append(question)
    return result


# =============================================================================
# STRUCTURAL PASS
# =============================================================================


class StructuralPass:
    """
    First pass of the two-pass strategy.

    Usage:
        structural = StructuralPass(client, executor)
        findings = await structural.analyze(page_image)
        if findings.shared_description:
            ...
    """

    def __init__(
        self,
        client: ModelClient,
        executor: RateLimitedExecutor,
        settings: Optional[GenerationSettings] = None,
    ):
        self.client = client
        self.executor = executor
        self.settings = settings

    async def analyze(self, image: PageImage) -> PageStructuralFindings:
        """
        Raises:
            CredentialsExhaustedError: Every key was rate-limited
            APIError: The call failed for another reason
        """
        prompt = get_structure_prompt()
        text = await self.executor.run(
            lambda credential: self.client.generate(credential, prompt, image, self.settings),
            operation=f"page {image.page_number} structure",
        )
        findings = decode_structure(text, image.page_number)
        logger.debug(
            f"Page {image.page_number} structure: "
            f"{len(findings.question_numbers)} question number(s), "
            f"shared description: {'yes' if findings.shared_description else 'no'}"
        )
        return findings


# =============================================================================
# EXTRACTION STRATEGIES
# =============================================================================


class PageExtractor:
    """Common machinery for the extraction strategies."""

    stage = "extraction"

    def __init__(
        self,
        client: ModelClient,
        executor: RateLimitedExecutor,
        config: Optional[ExtractionConfig] = None,
    ):
        self.client = client
        self.executor = executor
        self.config = config or ExtractionConfig()

    def recent_window(self, previous_questions: Sequence[ExtractedQuestion]) -> RecentQuestionWindow:
        return RecentQuestionWindow(
            previous_questions,
            size=self.config.recent_question_window,
            excerpt_chars=self.config.recent_question_chars,
        )

    async def _call(self, image: PageImage, prompt: str) -> str:
        return await self.executor.run(
            lambda credential: self.client.generate(credential, prompt, image, self.config.generation),
            operation=f"page {image.page_number} {self.stage}",
        )

    def _decode(
        self,
        text: str,
        page_number: int,
        descriptions: Sequence[SharedDescription] = (),
    ) -> list[ExtractedQuestion]:
        questions = decode_questions(text, page_number).items
        if self.config.inline_shared_descriptions and descriptions:
            questions = inline_shared_descriptions(questions, descriptions)
        return questions


class ContextualExtractionPass(PageExtractor):
    """
    Second pass of the two-pass strategy.

    Its output is the authoritative question list for the page.
    """

    async def extract(
        self,
        image: PageImage,
        shared_descriptions: Sequence[SharedDescription] = (),
        findings: Optional[PageStructuralFindings] = None,
        previous_questions: Sequence[ExtractedQuestion] = (),
    ) -> list[ExtractedQuestion]:
        prompt = get_contextual_extraction_prompt(
            page_number=image.page_number,
            shared_descriptions=shared_descriptions,
            findings=findings,
            recent_questions=self.recent_window(previous_questions).render(),
        )
        text = await self._call(image, prompt)
        return self._decode(text, image.page_number, shared_descriptions)


class SinglePassExtractor(PageExtractor):
    """
    One call per page, no structural pass.

    Keeps a PageMemory of truncated raw responses and the statements of the
    previous page's questions. Use one instance per document.
    """

    def __init__(
        self,
        client: ModelClient,
        executor: RateLimitedExecutor,
        config: Optional[ExtractionConfig] = None,
    ):
        super().__init__(client, executor, config)
        self.memory = PageMemory(snapshot_chars=self.config.memory_snapshot_chars)
        self.previous_context = ""

    async def extract(
        self,
        image: PageImage,
        previous_questions: Sequence[ExtractedQuestion] = (),
    ) -> list[ExtractedQuestion]:
        prompt = get_single_pass_prompt(
            page_number=image.page_number,
            memory_context=self.memory.render(
                limit=self.config.memory_pages,
                excerpt_chars=self.config.memory_excerpt_chars,
            ),
            previous_context=self.previous_context,
            recent_questions=self.recent_window(previous_questions).render(),
        )
        text = await self._call(image, prompt)
        self.memory.remember(image.page_number, text)

        questions = self._decode(text, image.page_number)
        if questions:
            self.previous_context = " ".join(q.question_statement for q in questions)
        return questions
