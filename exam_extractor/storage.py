"""
Storage for extraction results and saved questions.

- ExtractionStorage: full ExtractionResult JSON per run
- QuestionStore: validated question rows per course, as JSON files

Layout under data_dir:
    <document_id>/extraction/<document_id>_<timestamp>.json
    questions/<course_id>.json
"""

from __future__ import annotations

import json
import logging
import re
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from .exceptions import NothingToSaveError, StorageError
from .models import ExtractedQuestion, ExtractionResult, QuestionRecord, QuestionType, StoredQuestion


logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


# =============================================================================
# EXTRACTION RESULTS
# =============================================================================


@dataclass
class ExtractionPaths:
    document_id: str
    extraction_dir: Path
    extraction_file: Path


class ExtractionStorage:
    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)

    def build_paths(self, source_file: str) -> ExtractionPaths:
        document_id = Path(source_file).stem
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        extraction_dir = self.data_dir / document_id / "extraction"
        extraction_dir.mkdir(parents=True, exist_ok=True)
        extraction_file = extraction_dir / f"{document_id}_{timestamp}.json"
        return ExtractionPaths(
            document_id=document_id,
            extraction_dir=extraction_dir,
            extraction_file=extraction_file,
        )

    def save(self, result: ExtractionResult) -> ExtractionPaths:
        paths = self.build_paths(result.source_file)
        result.save(str(paths.extraction_file))
        return paths


# =============================================================================
# QUESTION BATCHES
# =============================================================================


def _parse_year(year: Union[int, str, None]) -> Optional[int]:
    if isinstance(year, bool):
        return None
    if isinstance(year, int):
        return year
    try:
        return int(str(year).strip())
    except (TypeError, ValueError):
        return None


def _question_fields(question: Union[ExtractedQuestion, dict]) -> dict[str, Any]:
    if isinstance(question, ExtractedQuestion):
        return {
            "question_type": question.question_type,
            "question_statement": question.question_statement,
            "options": question.options,
        }
    return {
        "question_type": question.get("question_type"),
        "question_statement": question.get("question_statement"),
        "options": question.get("options"),
    }


def build_question_batch(
    questions: Iterable[Union[ExtractedQuestion, dict]],
    course_id: Optional[str],
    year: Union[int, str, None],
) -> tuple[list[QuestionRecord], int]:
    """
    Turn extracted questions into storable rows, dropping invalid ones.

    A row is valid when its statement is non-empty after stripping, its type
    is one of the four tags, course_id is set and year lies strictly between
    2000 and 2030. Empty option lists are stored as None.

    Returns:
        (valid records, number of rejected questions)
    """
    parsed_year = _parse_year(year)
    records: list[QuestionRecord] = []
    rejected = 0

    for question in questions:
        fields = _question_fields(question)
        statement = fields["question_statement"]
        if not isinstance(statement, str) or not statement.strip():
            rejected += 1
            continue
        try:
            question_type = QuestionType.parse(fields["question_type"])
            records.append(
                QuestionRecord(
                    question_type=question_type,
                    question_statement=statement,
                    options=fields["options"] or None,
                    course_id=course_id or "",
                    year=parsed_year,
                )
            )
        except (ValueError, ValidationError):
            rejected += 1

    return records, rejected


# =============================================================================
# QUESTION STORE
# =============================================================================


class QuestionStore:
    """
    Append-only question rows, one JSON file per course.

    Usage:
        store = QuestionStore("data/exam_extractor")
        saved = store.save_questions(result.questions, course_id="physics-101", year=2023)
        rows = store.list_questions("physics-101", year=2023)
    """

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)
        self.questions_dir = self.data_dir / "questions"
        self._lock = threading.Lock()

    def questions_file(self, course_id: str) -> Path:
        safe_name = _UNSAFE_FILENAME_CHARS.sub("_", course_id)
        return self.questions_dir / f"{safe_name}.json"

    def save_questions(
        self,
        questions: Iterable[Union[ExtractedQuestion, dict]],
        course_id: Optional[str],
        year: Union[int, str, None],
    ) -> list[StoredQuestion]:
        """
        Validate and append a batch of questions.

        Raises:
            NothingToSaveError: If no question in the batch is valid
            StorageError: If the course file can't be read or written
        """
        records, rejected = build_question_batch(questions, course_id, year)
        if rejected:
            logger.warning(f"Dropped {rejected} invalid question(s) from save batch")
        if not records:
            raise NothingToSaveError(rejected)

        now = datetime.now(timezone.utc)
        stored = [
            StoredQuestion(id=str(uuid.uuid4()), created_at=now, **record.model_dump())
            for record in records
        ]

        path = self.questions_file(records[0].course_id)
        with self._lock:
            rows = self._read_rows(path)
            rows.extend(row.model_dump(mode="json") for row in stored)
            self._write_rows(path, rows)

        logger.info(f"Saved {len(stored)} question(s) to {path}")
        return stored

    def list_questions(self, course_id: str, year: Optional[int] = None) -> list[StoredQuestion]:
        with self._lock:
            rows = self._read_rows(self.questions_file(course_id))
        questions = [StoredQuestion.model_validate(row) for row in rows]
        if year is not None:
            questions = [q for q in questions if q.year == year]
        return questions

    def _read_rows(self, path: Path) -> list[dict]:
        if not path.exists():
            return []
        try:
            rows = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read question file: {path}", str(e)) from e
        if not isinstance(rows, list):
            raise StorageError(f"Question file is not a JSON list: {path}")
        return rows

    def _write_rows(self, path: Path, rows: list[dict]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(rows, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Cannot write question file: {path}", str(e)) from e
