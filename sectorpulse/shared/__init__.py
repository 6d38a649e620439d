"""Shared database, model and utility code for SectorPulse services."""
