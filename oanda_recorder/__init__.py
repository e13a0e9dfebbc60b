"""Record an OANDA pricing stream to daily NDJSON files."""

__version__ = "0.1.0"
