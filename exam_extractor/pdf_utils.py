"""
PDF Utilities for Question Extraction.

This module provides the rasterizer used in front of the pipeline:
- PDF validation and metadata extraction
- Page rendering to base64-encoded images, in page order
- Memory-efficient generator over all pages

Uses PyMuPDF (fitz) for rendering.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, Optional, Union

import fitz  # PyMuPDF

from .exceptions import PDFNotFoundError, PDFCorruptedError, PageRenderError


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class PageImage:
    """
    A single rendered page as a base64 image.

    Attributes:
        page_number: Page number (1-indexed, matches PDF page number)
        image_base64: Base64-encoded image data
        width: Image width in pixels (0 if unknown)
        height: Image height in pixels (0 if unknown)
        mime_type: MIME type (default: "image/png")
    """

    page_number: int
    image_base64: str
    width: int = 0
    height: int = 0
    mime_type: str = "image/png"

    @classmethod
    def from_base64(cls, image_base64: str, page_number: int, mime_type: str = "image/png") -> "PageImage":
        """Wrap an already-encoded page image (e.g. from another rasterizer)."""
        return cls(page_number=page_number, image_base64=image_base64, mime_type=mime_type)

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.image_base64}"

    def to_api_format(self) -> dict:
        """
        Convert to the OpenAI-compatible chat image part.

        Returns:
            Dictionary ready for a user message content list
        """
        return {
            "type": "image_url",
            "image_url": {
                "url": self.to_data_url(),
                "detail": "high",
            },
        }


@dataclass(frozen=True)
class PDFInfo:
    """
    Basic PDF document information.

    Attributes:
        path: Path to the PDF file
        page_count: Total number of pages
        title: Document title from metadata (may be empty)
        file_size_bytes: File size in bytes
    """

    path: str
    page_count: int
    title: str
    file_size_bytes: int


# =============================================================================
# PDF RENDERER CLASS
# =============================================================================


class PDFRenderer:
    """
    PDF to image renderer for vision model input.

    Exam scans carry small print (subscripts, option labels), so the default
    resolution is high; max_dimension caps memory use on large pages.

    Usage:
        renderer = PDFRenderer()

        info = renderer.get_info("paper.pdf")
        print(f"Pages: {info.page_count}")

        images = renderer.render_document("paper.pdf")
    """

    def __init__(
        self,
        dpi: int = 288,
        max_dimension: int = 3000,
        image_format: str = "png",
    ):
        """
        Args:
            dpi: Resolution for rendering
            max_dimension: Maximum width/height in pixels
            image_format: Output format ("png" or "jpeg")
        """
        self.dpi = dpi
        self.max_dimension = max_dimension
        self.image_format = image_format
        self.zoom = dpi / 72  # 72 is default PDF DPI

    def _open(self, pdf_path: Union[str, Path]) -> fitz.Document:
        path = Path(pdf_path)
        if not path.exists():
            raise PDFNotFoundError(str(path))
        try:
            return fitz.open(str(path))
        except (fitz.FileDataError, RuntimeError, ValueError) as e:
            raise PDFCorruptedError(str(path), e) from e

    def get_info(self, pdf_path: Union[str, Path]) -> PDFInfo:
        """
        Get basic information about a PDF document.

        Raises:
            PDFNotFoundError: If file doesn't exist
            PDFCorruptedError: If file can't be opened
        """
        path = Path(pdf_path)
        with self._open(path) as doc:
            metadata = doc.metadata or {}
            return PDFInfo(
                path=str(path),
                page_count=len(doc),
                title=metadata.get("title", "") or "",
                file_size_bytes=path.stat().st_size,
            )

    def get_page_count(self, pdf_path: Union[str, Path]) -> int:
        return self.get_info(pdf_path).page_count

    def render_page(
        self,
        pdf_path: Union[str, Path],
        page_number: int,
    ) -> PageImage:
        """
        Render a single page to an image.

        Args:
            pdf_path: Path to the PDF file
            page_number: Page number (1-indexed)

        Raises:
            PDFNotFoundError: If file doesn't exist
            PDFCorruptedError: If file can't be opened
            PageRenderError: If page can't be rendered
        """
        with self._open(pdf_path) as doc:
            if page_number < 1 or page_number > len(doc):
                raise PageRenderError(
                    page_number,
                    str(pdf_path),
                    ValueError(f"Page {page_number} out of range (1-{len(doc)})"),
                )
            return self._render_page_object(doc[page_number - 1], page_number, pdf_path)

    def render_all(
        self,
        pdf_path: Union[str, Path],
        start_page: int = 1,
        end_page: Optional[int] = None,
    ) -> Generator[PageImage, None, None]:
        """
        Render pages in order as a generator (memory-efficient).

        Yields:
            PageImage for each page from start_page to end_page
        """
        with self._open(pdf_path) as doc:
            total = len(doc)
            end = min(end_page or total, total)

            for page_num in range(start_page, end + 1):
                yield self._render_page_object(doc[page_num - 1], page_num, pdf_path)

    def render_document(self, pdf_path: Union[str, Path]) -> list[PageImage]:
        """All pages of a document, 1-indexed and in page order."""
        return list(self.render_all(pdf_path))

    def _render_page_object(
        self,
        page: fitz.Page,
        page_number: int,
        pdf_path: Union[str, Path],
    ) -> PageImage:
        try:
            mat = fitz.Matrix(self.zoom, self.zoom)
            pix = page.get_pixmap(matrix=mat, alpha=False)

            # Re-render smaller if over the size cap
            if pix.width > self.max_dimension or pix.height > self.max_dimension:
                scale = self.max_dimension / max(pix.width, pix.height)
                mat = fitz.Matrix(self.zoom * scale, self.zoom * scale)
                pix = page.get_pixmap(matrix=mat, alpha=False)

            img_bytes = pix.tobytes(output=self.image_format)
        except RuntimeError as e:
            raise PageRenderError(page_number, str(pdf_path), e) from e

        return PageImage(
            page_number=page_number,
            image_base64=base64.b64encode(img_bytes).decode("utf-8"),
            width=pix.width,
            height=pix.height,
            mime_type=f"image/{self.image_format}",
        )
