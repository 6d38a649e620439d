"""Shared utilities for SectorPulse."""
from .receipt import (
    RECEIPT_ALPHABET,
    DEFAULT_RECEIPT_PREFIX,
    generate_receipt_code,
    normalize_receipt_code,
    hash_receipt_code,
    verify_receipt_code,
)

__all__ = [
    "RECEIPT_ALPHABET",
    "DEFAULT_RECEIPT_PREFIX",
    "generate_receipt_code",
    "normalize_receipt_code",
    "hash_receipt_code",
    "verify_receipt_code",
]
