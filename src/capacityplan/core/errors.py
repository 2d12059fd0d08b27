"""Error kinds raised by the capacity core.

Store adapters translate driver errors into ``ConflictingWrite`` or
``StoreUnavailable``; engines raise ``InvalidInput`` and ``NotFound``.
"""

from __future__ import annotations


class CapacityError(Exception):
    """Base class for all capacity planning errors."""


class InvalidInput(CapacityError, ValueError):
    """Malformed row, non-positive duration, unknown department, missing field."""


class NotFound(CapacityError, LookupError):
    """The referenced job does not exist."""


class ConflictingWrite(CapacityError):
    """The store rejected a write because of a concurrent or duplicate write."""


class StoreUnavailable(CapacityError):
    """The underlying persistence layer failed."""
