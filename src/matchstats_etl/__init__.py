"""Match event ingestion, deduplication and player statistics pipeline."""

__version__ = "0.1.0"
