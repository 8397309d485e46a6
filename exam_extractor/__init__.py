"""
Exam Extractor - Page-by-Page Exam Question Extraction

Extracts typed question records from scanned exam papers with a vision model
behind an OpenAI-compatible API (Gemini by default).

Features:
- Two-pass extraction: structure analysis, then extraction with context
- Single-pass mode with rolling memory of previous pages
- Rotation over several API keys with failover on rate limits
- Tolerant JSON decoding with repair of LaTeX backslashes
- Shared descriptions inlined into every question they apply to
- Failed pages are reported, never abort the run

Quick Start:
    import asyncio
    from exam_extractor import ExtractionService

    service = ExtractionService()
    result = asyncio.run(service.extract("paper_2023.pdf"))

    for question in result.questions:
        print(f"Q{question.question_number} [{question.question_type.value}]")

    service.save_questions(result, course_id="physics-101", year=2023)

Environment:
    EXAM_EXTRACTOR_API_KEYS: Comma-separated API keys (or GEMINI_API_KEY)
    EXAM_EXTRACTOR_BASE_URL: OpenAI-compatible endpoint
    EXAM_EXTRACTOR_MODEL: Model name (default: gemini-1.5-flash)
    EXAM_EXTRACTOR_MODE: two_pass (default) or single_pass
    EXAM_EXTRACTOR_DATA_DIR: Storage directory
"""

__version__ = "1.0.0"

# Pipeline
from .pipeline import ExtractionPipeline
from .service import ExtractionService, DocumentOutcome
from .config import ExtractorConfig

# Building blocks
from .credentials import CredentialPool
from .api_client import RateLimitedExecutor, VisionModelClient, TokenUsage
from .decoder import DecodeResult, DecodeStatus, decode_questions, decode_structure, repair_json_text
from .passes import StructuralPass, ContextualExtractionPass, SinglePassExtractor

# Data models
from .models import (
    # Enums
    QuestionType,
    ExtractionMode,
    # Core models
    ExtractedQuestion,
    PageStructuralFindings,
    SharedDescription,
    PageMemory,
    ExtractionResult,
    # Configuration
    ExtractionConfig,
    GenerationSettings,
)

# Exceptions
from .exceptions import (
    ExtractionError,
    ConfigurationError,
    NoCredentialsError,
    PDFError,
    PDFNotFoundError,
    PDFCorruptedError,
    APIError,
    APIRateLimitError,
    CredentialsExhaustedError,
    NothingToSaveError,
)

# PDF utilities
from .pdf_utils import PDFRenderer, PageImage

# Storage
from .storage import ExtractionStorage, QuestionStore
