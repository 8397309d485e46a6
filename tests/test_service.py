"""
Tests for ExtractionService and ExtractorConfig.
"""

import asyncio
from unittest.mock import Mock

import pytest

from conftest import FakeModelClient, question_json
from exam_extractor import (
    ConfigurationError,
    ExtractionMode,
    ExtractionService,
    ExtractorConfig,
    NoCredentialsError,
    PDFNotFoundError,
)


def _renderer(page_images, missing=()):
    def render_document(pdf_path):
        if str(pdf_path) in missing:
            raise PDFNotFoundError(str(pdf_path))
        return page_images

    renderer = Mock()
    renderer.render_document.side_effect = render_document
    return renderer


@pytest.fixture
def service_factory(tmp_path, fast_config, page_images):
    def factory(client, missing=(), api_keys=("key-a", "key-b")):
        config = ExtractorConfig(
            api_keys=list(api_keys),
            data_dir=str(tmp_path),
            extraction=fast_config,
        )
        return ExtractionService(config=config, client=client, renderer=_renderer(page_images, missing))
    return factory


@pytest.fixture
def client():
    return FakeModelClient(extraction={
        1: question_json({"question_number": "1", "question_type": "MCQ", "question_statement": "Pick one."}),
        3: question_json({"question_number": "2", "question_type": "NAT", "question_statement": "Compute."}),
    })


class TestExtractionService:
    """Tests for single-document operations."""

    def test_extract(self, service_factory, client):
        result = asyncio.run(service_factory(client).extract("paper.pdf"))
        assert result.total_questions == 2

    def test_extract_and_save(self, service_factory, client, tmp_path):
        result, document_id, output_path = asyncio.run(service_factory(client).extract_and_save("exams/paper.pdf"))
        assert document_id == "paper"
        assert output_path.startswith(str(tmp_path))
        assert result.total_questions == 2

    def test_save_questions(self, service_factory, client):
        service = service_factory(client)
        result = asyncio.run(service.extract("paper.pdf"))

        saved = service.save_questions(result, course_id="c1", year="2023")

        assert len(saved) == 2
        assert len(service.question_store.list_questions("c1", year=2023)) == 2

    def test_no_credentials(self, service_factory, client):
        service = service_factory(client, api_keys=())
        with pytest.raises(NoCredentialsError):
            service.pipeline


class TestExtractBatch:
    """Tests for multi-document runs."""

    def test_failed_document_does_not_stop_batch(self, service_factory, client):
        service = service_factory(client, missing={"broken.pdf"})

        outcomes = asyncio.run(service.extract_batch(["a.pdf", "broken.pdf", "c.pdf"]))

        assert [o.succeeded for o in outcomes] == [True, False, True]
        assert "not found" in outcomes[1].error
        assert outcomes[2].result.total_questions == 2

    def test_auto_save(self, service_factory, client):
        service = service_factory(client)

        outcomes = asyncio.run(service.extract_batch(
            ["a.pdf", "b.pdf"], course_id="c1", year=2023, auto_save=True,
        ))

        assert [o.saved for o in outcomes] == [2, 2]
        assert len(service.question_store.list_questions("c1")) == 4

    def test_auto_save_with_invalid_year_reports_error(self, service_factory, client):
        service = service_factory(client)

        outcomes = asyncio.run(service.extract_batch(["a.pdf"], course_id="c1", year=1990, auto_save=True))

        assert outcomes[0].result.total_questions == 2
        assert outcomes[0].saved == 0
        assert "No valid questions" in outcomes[0].error

    def test_document_and_page_progress(self, service_factory, client):
        service = service_factory(client, missing=("b.pdf",))
        documents = Mock()
        pages = Mock()

        asyncio.run(service.extract_batch(
            ["a.pdf", "b.pdf", "c.pdf"],
            progress_callback=pages,
            document_callback=documents,
        ))

        assert [c.args for c in documents.call_args_list] == [
            (0, 3, "a.pdf"),
            (1, 3, "b.pdf"),
            (2, 3, "c.pdf"),
            (3, 3, "Complete"),
        ]
        page_completions = [c.args for c in pages.call_args_list if c.args[2] == "Complete"]
        assert page_completions == [(3, 3, "Complete"), (3, 3, "Complete")]

    def test_documents_share_one_pool(self, service_factory, client):
        service = service_factory(client)
        asyncio.run(service.extract_batch(["a.pdf", "b.pdf"]))

        usage = service.pipeline.pool.usage()
        assert sum(usage.values()) == 12
        assert usage["key-a"] == usage["key-b"]


class TestExtractorConfig:
    """Tests for environment configuration."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("EXAM_EXTRACTOR_API_KEYS", "key-a, key-b,,")
        monkeypatch.setenv("GEMINI_API_KEY", "key-c")
        monkeypatch.setenv("EXAM_EXTRACTOR_MODEL", "gemini-1.5-pro")
        monkeypatch.setenv("EXAM_EXTRACTOR_MODE", "single_pass")
        monkeypatch.setenv("EXAM_EXTRACTOR_DATA_DIR", "/tmp/exams")

        config = ExtractorConfig.from_env()

        assert config.api_keys == ["key-a", "key-b", "key-c"]
        assert config.extraction.model == "gemini-1.5-pro"
        assert config.extraction.mode is ExtractionMode.SINGLE_PASS
        assert config.data_dir == "/tmp/exams"
        assert len(config.create_pool()) == 3

    def test_defaults(self, monkeypatch):
        for name in ("EXAM_EXTRACTOR_API_KEYS", "GEMINI_API_KEY", "EXAM_EXTRACTOR_MODEL",
                     "EXAM_EXTRACTOR_MODE", "EXAM_EXTRACTOR_DATA_DIR", "EXAM_EXTRACTOR_BASE_URL"):
            monkeypatch.delenv(name, raising=False)

        config = ExtractorConfig.from_env()

        assert config.api_keys == []
        assert config.extraction.mode is ExtractionMode.TWO_PASS
        assert "generativelanguage.googleapis.com" in config.base_url

    def test_unknown_mode(self, monkeypatch):
        monkeypatch.setenv("EXAM_EXTRACTOR_MODE", "three_pass")
        with pytest.raises(ConfigurationError):
            ExtractorConfig.from_env()
