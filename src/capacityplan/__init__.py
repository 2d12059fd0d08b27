"""Production capacity reconciliation and scheduling model."""

__version__ = "0.1.0"
