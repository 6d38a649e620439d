"""SectorPulse: quarterly sector surveys with anonymity-protected aggregates."""

__version__ = "0.1.0"
