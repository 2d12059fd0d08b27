"""Persistence (SQLite) and spreadsheet adapters."""
