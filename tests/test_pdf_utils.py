"""
Tests for PDF rendering with generated documents.
"""

import base64
from pathlib import Path

import fitz
import pytest

from exam_extractor import PDFCorruptedError, PDFNotFoundError, PDFRenderer, PageImage
from exam_extractor.exceptions import PageRenderError


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


@pytest.fixture
def sample_pdf(tmp_path: Path) -> Path:
    path = tmp_path / "paper.pdf"
    doc = fitz.open()
    for number in (1, 2):
        page = doc.new_page()
        page.insert_text((72, 72), f"Q{number}. What is {number} + {number}?")
    doc.set_metadata({"title": "Sample Paper"})
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def renderer():
    return PDFRenderer(dpi=72)


def test_get_info(renderer, sample_pdf):
    info = renderer.get_info(sample_pdf)
    assert info.page_count == 2
    assert info.title == "Sample Paper"
    assert info.file_size_bytes > 0
    assert renderer.get_page_count(sample_pdf) == 2


def test_render_document_in_page_order(renderer, sample_pdf):
    images = renderer.render_document(sample_pdf)
    assert [image.page_number for image in images] == [1, 2]
    assert base64.b64decode(images[0].image_base64).startswith(PNG_SIGNATURE)
    assert images[0].mime_type == "image/png"


def test_max_dimension_caps_size(sample_pdf):
    image = PDFRenderer(dpi=288, max_dimension=500).render_page(sample_pdf, 1)
    assert max(image.width, image.height) <= 510


def test_render_page_out_of_range(renderer, sample_pdf):
    with pytest.raises(PageRenderError):
        renderer.render_page(sample_pdf, 3)


def test_missing_file(renderer, tmp_path):
    with pytest.raises(PDFNotFoundError):
        renderer.render_document(tmp_path / "missing.pdf")


def test_corrupted_file(renderer, tmp_path):
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"this is not a pdf")
    with pytest.raises(PDFCorruptedError):
        renderer.get_info(path)


def test_page_image_api_format():
    image = PageImage.from_base64("aW1n", page_number=4)
    assert image.page_number == 4
    assert image.to_api_format() == {
        "type": "image_url",
        "image_url": {"url": "data:image/png;base64,aW1n", "detail": "high"},
    }
