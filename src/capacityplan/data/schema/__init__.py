from __future__ import annotations

from capacityplan.data.schema.capacity_schema import ensure_schema as ensure_capacity_schema
from capacityplan.data.schema.core_schema import ensure_schema as ensure_core_schema

__all__ = ["ensure_capacity_schema", "ensure_core_schema"]
