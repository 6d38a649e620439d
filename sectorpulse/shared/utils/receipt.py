"""Receipt codes: the respondent's only proof of participation.

The plaintext code is shown once and never stored. Only its SHA-256 hex
digest is persisted, so a code cannot be recovered from the database and is
not linked to any identity.

Format: ``<PREFIX>-<YYYY>Q<q>-XXXX-XXXX``
"""
import hashlib
import hmac
import logging
import secrets

logger = logging.getLogger(__name__)

# Ambiguous characters (0, O, 1, I) are left out
RECEIPT_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
DEFAULT_RECEIPT_PREFIX = "PULSE"
BLOCK_LENGTH = 4


def _random_block(length: int = BLOCK_LENGTH) -> str:
    return "".join(secrets.choice(RECEIPT_ALPHABET) for _ in range(length))


def generate_receipt_code(
    year: int,
    quarter: int,
    prefix: str = DEFAULT_RECEIPT_PREFIX,
) -> str:
    """Generate a new receipt code for a survey period.

    Args:
        year: Survey year
        quarter: Survey quarter (1-4)
        prefix: Code prefix

    Returns:
        Code such as ``PULSE-2026Q3-A7K2-M9P3``
    """
    return f"{prefix}-{year}Q{quarter}-{_random_block()}-{_random_block()}"


def normalize_receipt_code(code: str) -> str:
    """Trim whitespace and upper-case a code typed by a respondent."""
    return (code or "").strip().upper()


def hash_receipt_code(code: str) -> str:
    """SHA-256 hex digest of a receipt code (the only stored form)."""
    return hashlib.sha256(code.encode()).hexdigest()


def verify_receipt_code(code: str, stored_hash: str) -> bool:
    """Check a code against a stored hash in constant time.

    The comparison is exact; normalise user input first.
    """
    if not code or not stored_hash:
        return False
    return hmac.compare_digest(hash_receipt_code(code), stored_hash)
