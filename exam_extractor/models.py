"""
Data Models for Exam Question Extraction.

This module defines the core data structures for the page-by-page question
extraction pipeline. In two-pass mode the pipeline works in two phases:

1. STRUCTURE: Each page is analyzed for shared descriptions, questions that
   run over the page boundary, and the question numbers visible on it
2. EXTRACTION: Each page is extracted into typed questions, with the shared
   descriptions, the last extracted questions and recent page memory as context

Architecture:
    PDF → [Rasterize] → PageImage[]
                            ↓
        [Structure]  → PageStructuralFindings[] → SharedDescription[]
                            ↓
        [Extract]    → ExtractedQuestion[]
                            ↓
                    ExtractionResult

Design Principles:
    - Pydantic v2 for validation and serialization
    - Model output is normalized on the way in (numbers to strings, nulls to defaults)
    - Records are never mutated once created; use model_copy for variants

Usage:
    from exam_extractor import ExtractionService

    service = ExtractionService()
    result = asyncio.run(service.extract("paper_2023.pdf"))

    for question in result.questions:
        print(f"Q{question.question_number}: {question.question_statement[:80]}")
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence

from pydantic import AliasChoices, BaseModel, Field, computed_field, field_validator, model_validator


# =============================================================================
# ENUMS
# =============================================================================


class QuestionType(str, Enum):
    """
    Closed set of question types.

    MCQ: single correct option
    MSQ: multiple correct options
    NAT: numerical answer
    SUBJECTIVE: descriptive answer
    """

    MCQ = "MCQ"
    MSQ = "MSQ"
    NAT = "NAT"
    SUBJECTIVE = "Subjective"

    @classmethod
    def parse(cls, value: Any) -> "QuestionType":
        """Case-insensitive lookup ("mcq" → MCQ)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        raise ValueError(f"Unknown question type: {value!r}")


class ExtractionMode(str, Enum):
    """Page orchestration strategy."""

    TWO_PASS = "two_pass"
    SINGLE_PASS = "single_pass"


# =============================================================================
# HELPERS
# =============================================================================


_NUMBER_PATTERN = re.compile(r"\d+")

_RANGE_PATTERN = re.compile(
    r"\b(?:questions?|qs?)\.?\s*(?:nos?\.?\s*)?(\d+)"
    r"\s*(-|–|—|to|through|and|&)\s*"
    r"(?:q\.?\s*)?(\d+)",
    re.IGNORECASE,
)

MAX_RANGE_WIDTH = 30

_COUNT_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}

_COUNT_PATTERN = re.compile(
    r"\b(?:following|next)\s+(\d+|" + "|".join(_COUNT_WORDS) + r")\s+questions?\b",
    re.IGNORECASE,
)


def question_base_number(number: Optional[str]) -> Optional[int]:
    """Leading integer of a question number ("11(A)" → 11, "Q17" → 17)."""
    if not number:
        return None
    match = _NUMBER_PATTERN.search(number)
    return int(match.group()) if match else None


def parse_question_numbers(text: str) -> list[int]:
    """
    Question numbers referenced by range phrases in a shared description.

    Examples:
        "Use the figure to answer Q5–Q6"      → [5, 6]
        "For questions 17-19"                 → [17, 18, 19]
        "Read the passage for Q.3 and Q.7"    → [3, 7]
    """
    numbers: set[int] = set()
    for match in _RANGE_PATTERN.finditer(text or ""):
        first, separator, last = int(match.group(1)), match.group(2).lower(), int(match.group(3))
        if separator in ("and", "&"):
            numbers.update((first, last))
        elif first <= last and last - first <= MAX_RANGE_WIDTH:
            numbers.update(range(first, last + 1))
    return sorted(numbers)


def parse_question_count(text: str) -> Optional[int]:
    """
    Question count of a "following N questions" phrase.

    Examples:
        "Description for the following 3 questions:"  → 3
        "Answer the next two questions"                → 2
    """
    match = _COUNT_PATTERN.search(text or "")
    if not match:
        return None
    word = match.group(1).lower()
    count = _COUNT_WORDS[word] if word in _COUNT_WORDS else int(word)
    return count if 0 < count <= MAX_RANGE_WIDTH else None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


# =============================================================================
# MODEL CALL SETTINGS
# =============================================================================


class GenerationSettings(BaseModel):
    """
    Sampling settings for extraction calls.

    Low temperature and top-k 1 keep the output close to deterministic,
    which matters more than variety for transcription.
    """

    temperature: float = Field(0.1, ge=0.0, le=2.0)
    top_k: Optional[int] = Field(1, ge=1)
    top_p: float = Field(0.8, gt=0.0, le=1.0)
    max_output_tokens: int = Field(8192, ge=256)

    model_config = {"frozen": True}


# =============================================================================
# QUESTIONS
# =============================================================================


class ExtractedQuestion(BaseModel):
    """
    A single question extracted from an exam page.

    The model's JSON is normalized before validation: numeric question
    numbers become strings, nulls become defaults, and the alternative
    keys "has_diagram"/"diagram_description" fill the image fields.
    """

    question_number: Optional[str] = Field(
        None,
        description="Displayed number, composite forms allowed (e.g. '11(A)')"
    )
    question_type: QuestionType = Field(
        ...,
        description="MCQ, MSQ, NAT or Subjective"
    )
    question_statement: str = Field(
        "",
        description="Full statement including inlined shared descriptions, LaTeX allowed"
    )
    options: Optional[list[str]] = Field(
        None,
        description="Option texts in display order (MCQ/MSQ)"
    )
    page_number: int = Field(
        ...,
        ge=1,
        description="Page the question was extracted from (set by the pipeline)"
    )
    confidence_score: float = Field(
        1.0,
        ge=0.0,
        le=1.0,
        description="Model-reported confidence, 1.0 when absent"
    )
    is_continuation: bool = Field(
        False,
        description="Continues a question from a previous page"
    )
    spans_multiple_pages: bool = Field(
        False,
        description="Starts on this page and runs past it"
    )
    continuation_from_page: Optional[int] = Field(
        None,
        ge=1,
        description="Page the continued question started on"
    )
    has_image: bool = Field(
        False,
        description="Contains a visual element that text cannot fully capture"
    )
    image_description: Optional[str] = Field(
        None,
        description="Description of the visual element"
    )
    uploaded_image: Optional[str] = Field(
        None,
        description="Base64 image attached after review"
    )

    @model_validator(mode="before")
    @classmethod
    def normalize_model_output(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        if data.get("has_image") is None and data.get("has_diagram") is not None:
            data["has_image"] = data["has_diagram"]
        if not data.get("image_description") and data.get("diagram_description"):
            data["image_description"] = data["diagram_description"]

        for flag in ("is_continuation", "spans_multiple_pages", "has_image"):
            if data.get(flag) is None:
                data.pop(flag, None)

        if data.get("confidence_score") is None:
            data.pop("confidence_score", None)
        if data.get("question_statement") is None:
            data["question_statement"] = ""
        return data

    @field_validator("question_type", mode="before")
    @classmethod
    def parse_question_type(cls, value: Any) -> QuestionType:
        return QuestionType.parse(value)

    @field_validator("question_number", "image_description", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Optional[str]:
        return _as_text(value)

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_confidence(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return min(max(float(value), 0.0), 1.0)
        return value

    @field_validator("options", mode="before")
    @classmethod
    def coerce_options(cls, value: Any) -> Optional[list[str]]:
        if value is None:
            return None
        if isinstance(value, (str, int, float)):
            value = [value]
        return [str(option) for option in value if option is not None]

    @property
    def base_number(self) -> Optional[int]:
        return question_base_number(self.question_number)

    def with_uploaded_image(self, image_base64: str) -> "ExtractedQuestion":
        """Copy of this question with a user-supplied image attached."""
        return self.model_copy(update={"uploaded_image": image_base64, "has_image": True})


# =============================================================================
# STRUCTURAL FINDINGS
# =============================================================================


class PageStructuralFindings(BaseModel):
    """
    Result of the structural pass for one page.

    Accepts both snake_case and the camelCase keys the prompt asks for.
    """

    page_number: int = Field(..., ge=1)
    shared_description: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("shared_description", "sharedDescription"),
        description="Text that applies to a run of questions"
    )
    has_multi_page_question: bool = Field(
        False,
        validation_alias=AliasChoices("has_multi_page_question", "hasMultiPageQuestion"),
        description="A question starts here but does not finish on this page"
    )
    question_numbers: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("question_numbers", "questionNumbers"),
        description="Question identifiers visible on the page"
    )

    @field_validator("shared_description", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Optional[str]:
        text = _as_text(value)
        if text and text.lower() in ("null", "none"):
            return None
        return text

    @field_validator("has_multi_page_question", mode="before")
    @classmethod
    def null_to_false(cls, value: Any) -> bool:
        return False if value is None else value

    @field_validator("question_numbers", mode="before")
    @classmethod
    def coerce_numbers(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, (str, int, float)):
            value = [value]
        return [text for text in (_as_text(item) for item in value) if text]

    @classmethod
    def empty(cls, page_number: int) -> "PageStructuralFindings":
        return cls(page_number=page_number)


def _base_numbers(findings: Optional[PageStructuralFindings]) -> list[int]:
    if findings is None:
        return []
    numbers = (question_base_number(number) for number in findings.question_numbers)
    return sorted({n for n in numbers if n is not None})


def _counted_range(count: int, page_numbers: list[int], next_numbers: list[int]) -> list[int]:
    """
    N consecutive numbers for a "following N questions" description.

    If the page shows at least N questions, the description's questions are
    the last N on it. Otherwise they start right after the page's last
    question, or at the next page's first one when the page shows none.
    """
    if len(page_numbers) >= count:
        start = page_numbers[-count]
    elif page_numbers:
        start = page_numbers[-1] + 1
    elif next_numbers:
        start = next_numbers[0]
    else:
        return []
    return list(range(start, start + count))


class SharedDescription(BaseModel):
    """
    A shared description together with the questions it applies to.

    The range comes from, in order:
    1. an explicit range in the text ("For questions 5-8")
    2. a count ("for the following 2 questions") counted on from the
       page's questions, or from the next page's when the page shows none
    3. the question numbers visible on the description's page

    question_numbers is empty only when none of these yields a number;
    such a description is only offered on its own page.
    """

    text: str = Field(..., min_length=1)
    page_number: int = Field(..., ge=1)
    question_numbers: list[int] = Field(default_factory=list)

    model_config = {"frozen": True}

    @classmethod
    def from_findings(
        cls,
        findings: PageStructuralFindings,
        next_findings: Optional[PageStructuralFindings] = None,
    ) -> Optional["SharedDescription"]:
        if not findings.shared_description:
            return None

        page_numbers = _base_numbers(findings)
        numbers = parse_question_numbers(findings.shared_description)
        if not numbers:
            count = parse_question_count(findings.shared_description)
            if count:
                numbers = _counted_range(count, page_numbers, _base_numbers(next_findings))
        if not numbers:
            numbers = page_numbers

        return cls(
            text=findings.shared_description,
            page_number=findings.page_number,
            question_numbers=numbers,
        )

    def applies_to(self, question: ExtractedQuestion) -> bool:
        number = question.base_number
        return number is not None and number in self.question_numbers

    def is_open(self, extracted_numbers: set[int]) -> bool:
        """True while some question in the range has not been extracted yet."""
        return bool(self.question_numbers) and not set(self.question_numbers) <= extracted_numbers


# =============================================================================
# ROLLING CONTEXT
# =============================================================================


class PageMemory:
    """
    Truncated raw responses of earlier pages, in processing order.

    Every page is remembered, but prompts only read the most recent entries.
    """

    def __init__(self, snapshot_chars: int = 1000):
        self.snapshot_chars = snapshot_chars
        self._entries: dict[int, str] = {}

    def remember(self, page_number: int, raw_response: str) -> None:
        self._entries[page_number] = (raw_response or "")[: self.snapshot_chars]

    def get(self, page_number: int) -> Optional[str]:
        return self._entries.get(page_number)

    def recent(self, limit: int = 3) -> list[tuple[int, str]]:
        if limit <= 0:
            return []
        return list(self._entries.items())[-limit:]

    def render(self, limit: int = 3, excerpt_chars: int = 500) -> str:
        return "\n\n".join(
            f"Page {page}: {content[:excerpt_chars]}..."
            for page, content in self.recent(limit)
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, page_number: object) -> bool:
        return page_number in self._entries


class RecentQuestionWindow:
    """The last few extracted questions, summarized for the next prompt."""

    def __init__(
        self,
        questions: Sequence[ExtractedQuestion],
        size: int = 3,
        excerpt_chars: int = 200,
    ):
        self.questions = list(questions)[-size:] if size > 0 else []
        self.excerpt_chars = excerpt_chars

    def render(self) -> str:
        return "\n".join(
            f"Q{q.question_number or '?'}: {q.question_statement[: self.excerpt_chars]}..."
            for q in self.questions
        )

    def __len__(self) -> int:
        return len(self.questions)


# =============================================================================
# CONFIGURATION
# =============================================================================


class ExtractionConfig(BaseModel):
    """
    Configuration for the extraction pipeline.

    Controls model settings, pacing, retry backoff and context sizes.
    The pacing delays only keep the run under external rate limits;
    tuning them does not change results.
    """

    # Strategy
    mode: ExtractionMode = Field(
        ExtractionMode.TWO_PASS,
        description="two_pass (structure, then extraction) or single_pass"
    )

    # Model
    model: str = Field(
        "gemini-1.5-flash",
        description="Vision model name on the OpenAI-compatible endpoint"
    )
    generation: GenerationSettings = Field(default_factory=GenerationSettings)

    # Retry and pacing
    rate_limit_backoff_seconds: float = Field(
        2.0,
        ge=0.0,
        le=60.0,
        description="Wait before retrying a rate-limited call with the next key"
    )
    structural_delay_seconds: float = Field(
        5.0,
        ge=0.0,
        description="Pause between structural calls"
    )
    extraction_delay_seconds: float = Field(
        10.0,
        ge=0.0,
        description="Pause between extraction calls"
    )
    document_delay_seconds: float = Field(
        5.0,
        ge=0.0,
        description="Pause between documents in a batch"
    )

    # Context sizes
    recent_question_window: int = Field(3, ge=0, le=20)
    recent_question_chars: int = Field(200, ge=20)
    memory_pages: int = Field(3, ge=0, le=20)
    memory_snapshot_chars: int = Field(1000, ge=100)
    memory_excerpt_chars: int = Field(500, ge=50)

    # Post-processing
    inline_shared_descriptions: bool = Field(
        True,
        description="Prepend applicable shared descriptions to statements missing them"
    )


# =============================================================================
# RESULTS
# =============================================================================


class ExtractionResult(BaseModel):
    """
    Complete result of extracting one document.

    Contains every extracted question in page order plus per-page errors,
    so a run with failed pages still returns everything that worked.
    """

    source_file: str = Field(..., description="Path or label of the source document")
    mode: ExtractionMode = Field(ExtractionMode.TWO_PASS)
    total_pages: int = Field(0, ge=0)

    questions: list[ExtractedQuestion] = Field(default_factory=list)
    structural_findings: list[PageStructuralFindings] = Field(default_factory=list)

    page_errors: dict[int, str] = Field(
        default_factory=dict,
        description="Pages that contributed nothing because a pass failed"
    )
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    processing_time_seconds: float = Field(0.0)
    total_input_tokens: int = Field(0)
    total_output_tokens: int = Field(0)

    extracted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @computed_field
    @property
    def total_questions(self) -> int:
        return len(self.questions)

    def questions_on_page(self, page_number: int) -> list[ExtractedQuestion]:
        return [q for q in self.questions if q.page_number == page_number]

    def get_statistics(self) -> dict[str, Any]:
        """Summary counts for reporting."""
        by_type = {t.value: 0 for t in QuestionType}
        for question in self.questions:
            by_type[question.question_type.value] += 1
        return {
            "total_pages": self.total_pages,
            "total_questions": self.total_questions,
            "questions_by_type": by_type,
            "failed_pages": sorted(self.page_errors),
            "questions_with_images": sum(1 for q in self.questions if q.has_image),
            "multi_page_questions": sum(1 for q in self.questions if q.spans_multiple_pages),
            "api_tokens_used": self.total_input_tokens + self.total_output_tokens,
            "processing_time_seconds": self.processing_time_seconds,
            "errors": len(self.errors),
            "warnings": len(self.warnings),
        }

    # --- Export Methods ---

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)

    def save(self, path: str) -> None:
        Path(path).write_text(self.to_json(), encoding="utf-8")

    @classmethod
    def load(cls, path: str) -> "ExtractionResult":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.model_validate(data)


# =============================================================================
# STORAGE RECORDS
# =============================================================================


class QuestionRecord(BaseModel):
    """A validated row for the question store."""

    question_type: QuestionType
    question_statement: str = Field(..., min_length=1)
    options: Optional[list[str]] = None
    course_id: str = Field(..., min_length=1)
    year: int = Field(..., gt=2000, lt=2030)
    categorized: bool = False


class StoredQuestion(QuestionRecord):
    """A row as persisted by the question store."""

    id: str
    created_at: datetime


# =============================================================================
# API MODELS
# =============================================================================


class ExtractRequest(BaseModel):
    pdf_path: str
    course_id: Optional[str] = None
    year: Optional[int] = None
    save: bool = False


class ExtractResponse(BaseModel):
    document_id: str
    output_path: str
    pages: int
    questions: int
    page_errors: dict[int, str] = Field(default_factory=dict)
    saved: int = 0
