from dataclasses import dataclass, field
import os

from .api_client import DEFAULT_BASE_URL
from .credentials import CredentialPool
from .exceptions import ConfigurationError
from .models import ExtractionConfig, ExtractionMode


def _split_keys(value: str) -> list[str]:
    return [key.strip() for key in value.split(",") if key.strip()]


@dataclass
class ExtractorConfig:
    api_keys: list[str] = field(default_factory=list)
    base_url: str = DEFAULT_BASE_URL
    data_dir: str = "data/exam_extractor"
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)

    @classmethod
    def from_env(cls) -> "ExtractorConfig":
        api_keys = _split_keys(os.environ.get("EXAM_EXTRACTOR_API_KEYS", ""))
        single_key = os.environ.get("GEMINI_API_KEY", "").strip()
        if single_key and single_key not in api_keys:
            api_keys.append(single_key)

        extraction = ExtractionConfig()
        overrides = {}
        if os.environ.get("EXAM_EXTRACTOR_MODEL"):
            overrides["model"] = os.environ["EXAM_EXTRACTOR_MODEL"]
        if os.environ.get("EXAM_EXTRACTOR_MODE"):
            mode = os.environ["EXAM_EXTRACTOR_MODE"].strip().lower()
            try:
                overrides["mode"] = ExtractionMode(mode)
            except ValueError as e:
                raise ConfigurationError(f"Unknown extraction mode: {mode}") from e
        if overrides:
            extraction = extraction.model_copy(update=overrides)

        return cls(
            api_keys=api_keys,
            base_url=os.environ.get("EXAM_EXTRACTOR_BASE_URL", cls.base_url),
            data_dir=os.environ.get("EXAM_EXTRACTOR_DATA_DIR", cls.data_dir),
            extraction=extraction,
        )

    def create_pool(self) -> CredentialPool:
        """Raises NoCredentialsError if no key is configured."""
        return CredentialPool(self.api_keys)
