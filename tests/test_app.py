"""
Tests for the FastAPI service.
"""

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from conftest import FakeModelClient, question_json
from exam_extractor import ExtractionService, ExtractorConfig, PDFNotFoundError
from exam_extractor.app import create_app


@pytest.fixture
def api(tmp_path, fast_config, page_images):
    def render_document(pdf_path):
        if "missing" in str(pdf_path):
            raise PDFNotFoundError(str(pdf_path))
        return page_images

    renderer = Mock()
    renderer.render_document.side_effect = render_document
    client = FakeModelClient(
        extraction={1: question_json({"question_number": "1", "question_type": "MCQ", "question_statement": "Pick."})},
        failures={("extraction", 3): RuntimeError("model unavailable")},
    )
    config = ExtractorConfig(api_keys=["key-a"], data_dir=str(tmp_path), extraction=fast_config)
    service = ExtractionService(config=config, client=client, renderer=renderer)
    return TestClient(create_app(service=service))


def test_health(api):
    response = api.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_extract(api):
    response = api.post("/extract", json={"pdf_path": "papers/physics_2023.pdf"})
    assert response.status_code == 200

    body = response.json()
    assert body["document_id"] == "physics_2023"
    assert body["pages"] == 3
    assert body["questions"] == 1
    assert body["page_errors"] == {"3": "model unavailable"}
    assert body["saved"] == 0


def test_extract_and_save_questions(api):
    response = api.post(
        "/extract",
        json={"pdf_path": "papers/physics_2023.pdf", "course_id": "physics-101", "year": 2023, "save": True},
    )
    assert response.status_code == 200
    assert response.json()["saved"] == 1


def test_save_requires_course_and_year(api):
    response = api.post("/extract", json={"pdf_path": "paper.pdf", "save": True})
    assert response.status_code == 400


def test_missing_pdf(api):
    response = api.post("/extract", json={"pdf_path": "missing.pdf"})
    assert response.status_code == 404


def test_no_credentials(tmp_path):
    config = ExtractorConfig(api_keys=[], data_dir=str(tmp_path))
    api = TestClient(create_app(config=config))
    response = api.post("/extract", json={"pdf_path": "paper.pdf"})
    assert response.status_code == 503
