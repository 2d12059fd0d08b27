from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    db_path: Path
    log_level: str = "INFO"


def default_db_path() -> Path:
    # Fixed, repo-local database location (keeps paths stable across machines).
    return Path("db") / "capacityplan.db"


# Runtime policy keys stored in the app_config table.
CONFIG_ORPHAN_POLICY = "orphan_policy"
CONFIG_STRICT_MACHINE_REGISTRY = "strict_machine_registry"
CONFIG_DEFAULT_WORKING_HOURS = "default_working_hours_per_day"

CONFIG_DEFAULTS: dict[str, str] = {
    CONFIG_ORPHAN_POLICY: "remove",
    CONFIG_STRICT_MACHINE_REGISTRY: "0",
    CONFIG_DEFAULT_WORKING_HOURS: "24",
}
