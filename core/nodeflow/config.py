"""Shared nodeflow configuration.

Centralises reading of ~/.nodeflow/configuration.json so the CLI, the
storage manager and the executor agree on limits and locations.

Example file:

    {
      "storage": {"dir": "~/.nodeflow/storage", "memory_budget_mb": 100},
      "executor": {"run_history": 50, "download_media": false}
    }
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

NODEFLOW_HOME = Path.home() / ".nodeflow"
NODEFLOW_CONFIG_FILE = NODEFLOW_HOME / "configuration.json"

MiB = 1024 * 1024

DEFAULT_MEMORY_BUDGET = 100 * MiB
DEFAULT_COMPRESSION_THRESHOLD = 1024  # characters
DEFAULT_HISTORY_CAPACITY = 10
DEFAULT_SNAPSHOT_INTERVAL = 30.0  # seconds
DEFAULT_POPUP_TIMEOUT_MS = 20000
DEFAULT_RUN_HISTORY = 50


def get_nodeflow_config() -> dict[str, Any]:
    """Load configuration from ~/.nodeflow/configuration.json."""
    if not NODEFLOW_CONFIG_FILE.exists():
        return {}
    try:
        with open(NODEFLOW_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _section(name: str) -> dict[str, Any]:
    section = get_nodeflow_config().get(name, {})
    return section if isinstance(section, dict) else {}


def get_storage_dir() -> Path:
    """Return the directory holding the persistent and large-object stores."""
    configured = _section("storage").get("dir")
    if configured:
        return Path(configured).expanduser()
    return NODEFLOW_HOME / "storage"


def get_memory_budget() -> int:
    """Return the LRU cache budget in bytes."""
    budget_mb = _section("storage").get("memory_budget_mb")
    if budget_mb is None:
        return DEFAULT_MEMORY_BUDGET
    return int(float(budget_mb) * MiB)


def get_snapshot_interval() -> float:
    return float(_section("storage").get("snapshot_interval", DEFAULT_SNAPSHOT_INTERVAL))


def get_run_history_limit() -> int:
    return int(_section("executor").get("run_history", DEFAULT_RUN_HISTORY))


def get_download_media() -> bool:
    return bool(_section("executor").get("download_media", False))


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------


@dataclass
class StorageConfig:
    """Storage manager configuration loaded from ~/.nodeflow/configuration.json."""

    storage_dir: Path = field(default_factory=get_storage_dir)
    memory_budget: int = field(default_factory=get_memory_budget)
    compression_threshold: int = DEFAULT_COMPRESSION_THRESHOLD
    history_capacity: int = DEFAULT_HISTORY_CAPACITY
    snapshot_interval: float = field(default_factory=get_snapshot_interval)
    default_popup_timeout_ms: int = DEFAULT_POPUP_TIMEOUT_MS
    downsize_images: bool = False
    image_max_width: int = 1920
    image_max_height: int = 1080
    image_quality: int = 80
    image_resize_threshold: int = MiB


@dataclass
class ExecutorConfig:
    """Workflow executor configuration."""

    run_history: int = field(default_factory=get_run_history_limit)
    download_media: bool = field(default_factory=get_download_media)
