"""
Pytest fixtures for Exam Extractor tests.
"""

import json

import pytest

from exam_extractor import CredentialPool, ExtractionConfig, PageImage
from exam_extractor.prompts import STRUCTURE_PROMPT_HEADER


class FakeModelClient:
    """
    Scripted stand-in for VisionModelClient.

    Replies are looked up by call kind ("structure" or "extraction") and page
    number. failures maps a page number, or a (kind, page) pair, to the
    exception that call raises.
    """

    def __init__(self, structure=None, extraction=None, failures=None):
        self.structure = structure or {}
        self.extraction = extraction or {}
        self.failures = failures or {}
        self.calls = []

    async def generate(self, credential, prompt, image, settings=None):
        kind = "structure" if prompt.startswith(STRUCTURE_PROMPT_HEADER) else "extraction"
        self.calls.append(
            {"credential": credential, "kind": kind, "page": image.page_number, "prompt": prompt}
        )

        error = self.failures.get((kind, image.page_number), self.failures.get(image.page_number))
        if error is not None:
            raise error

        if kind == "structure":
            return self.structure.get(image.page_number, "{}")
        return self.extraction.get(image.page_number, "[]")

    def calls_of(self, kind):
        return [call for call in self.calls if call["kind"] == kind]


def question_json(*questions) -> str:
    """Serialize question dicts the way a model would reply."""
    return "Here are the questions:\n" + json.dumps(list(questions))


@pytest.fixture
def fast_config():
    """ExtractionConfig without pacing or backoff."""
    return ExtractionConfig(
        rate_limit_backoff_seconds=0,
        structural_delay_seconds=0,
        extraction_delay_seconds=0,
        document_delay_seconds=0,
    )


@pytest.fixture
def pool():
    return CredentialPool(["key-a", "key-b", "key-c"])


@pytest.fixture
def page_images():
    """Three fake page images."""
    return [PageImage(page_number=n, image_base64=f"page{n}") for n in (1, 2, 3)]


@pytest.fixture
def fake_client():
    return FakeModelClient()
