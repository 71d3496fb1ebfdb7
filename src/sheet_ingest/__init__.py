"""Spreadsheet-to-table ingestion for the spare parts dashboard."""

__version__ = "0.1.0"
