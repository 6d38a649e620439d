"""K-anonymity guard.

Every read path that surfaces respondent-derived statistics (dashboard,
cached aggregation lookups, export, respondent verification) passes its
data through this guard. The guard only ever sees a payload and its
response count, never individual answers, so a suppression decision
reveals nothing beyond that count.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

from .config import DEFAULT_K_ANONYMITY_THRESHOLD, get_k_threshold

logger = logging.getLogger(__name__)

SUPPRESSION_MESSAGE = "Insufficient responses to preserve anonymity."

T = TypeVar('T')


@dataclass(frozen=True)
class KAnonResult(Generic[T]):
    """Result of a k-anonymity check.

    Attributes:
        data: The payload, or None if suppressed
        suppressed: True if the response count was below threshold
        response_count: Number of contributing submissions
        message: User-facing suppression message, None when passed
    """
    data: Optional[T]
    suppressed: bool
    response_count: int
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "suppressed": self.suppressed,
            "response_count": self.response_count,
            "message": self.message,
        }


def get_threshold() -> int:
    """Threshold in force for the next check."""
    return get_k_threshold()


class KAnonymityEnforcer:
    """Suppresses payloads whose response count is below the threshold.

    With no fixed threshold the environment setting is read on every check.
    """

    def __init__(self, k_threshold: Optional[int] = None):
        """Initialize enforcer.

        Args:
            k_threshold: Fixed minimum response count; invalid values fall
                back to the default and None defers to the environment
        """
        if k_threshold is not None and k_threshold <= 0:
            k_threshold = DEFAULT_K_ANONYMITY_THRESHOLD
        self._fixed_threshold = k_threshold

    @property
    def k_threshold(self) -> int:
        if self._fixed_threshold is not None:
            return self._fixed_threshold
        return get_threshold()

    def check(
        self,
        data: T,
        response_count: int,
        context: Optional[str] = None,
    ) -> KAnonResult[T]:
        """Suppress ``data`` unless ``response_count`` reaches the threshold.

        The boundary is inclusive: a count equal to the threshold passes.

        Args:
            data: Payload to guard
            response_count: Distinct contributing submissions
            context: Description of the slice for logging

        Returns:
            KAnonResult with the payload or the suppression message
        """
        threshold = self.k_threshold

        if response_count < threshold:
            logger.info(
                "K_ANONYMITY_SUPPRESSED",
                extra={
                    "response_count": response_count,
                    "k_threshold": threshold,
                    "context": context,
                }
            )
            return KAnonResult(
                data=None,
                suppressed=True,
                response_count=response_count,
                message=SUPPRESSION_MESSAGE,
            )

        logger.debug(
            "K_ANONYMITY_PASSED",
            extra={
                "response_count": response_count,
                "k_threshold": threshold,
                "context": context,
            }
        )
        return KAnonResult(
            data=data,
            suppressed=False,
            response_count=response_count,
        )


def check_k_anonymity(data: T, response_count: int) -> KAnonResult[T]:
    """One-off check using the threshold currently configured."""
    return KAnonymityEnforcer().check(data, response_count)
