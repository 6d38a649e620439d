"""Survey Service configuration."""
import os
from dataclasses import dataclass

from sectorpulse.shared.utils import DEFAULT_RECEIPT_PREFIX


@dataclass(frozen=True)
class SurveyConfig:
    """Configuration for survey delivery and submission ingestion."""
    receipt_code_prefix: str = DEFAULT_RECEIPT_PREFIX
    free_text_max_length: int = 1000
    size_band_max_length: int = 64

    @classmethod
    def from_env(cls) -> "SurveyConfig":
        """Create config from environment variables.

        Environment variables:
            RECEIPT_CODE_PREFIX: Prefix of generated receipt codes (default PULSE)
            FREE_TEXT_MAX_LENGTH: Max characters of a free-text answer (default 1000)
        """
        prefix = os.getenv("RECEIPT_CODE_PREFIX", "").strip().upper()
        try:
            max_length = int(os.getenv("FREE_TEXT_MAX_LENGTH", "1000"))
        except ValueError:
            max_length = 1000

        return cls(
            receipt_code_prefix=prefix or DEFAULT_RECEIPT_PREFIX,
            free_text_max_length=max_length if max_length > 0 else 1000,
        )
