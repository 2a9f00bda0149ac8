"""
Depstree - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the lifecycle coordinator.

- Lifecycle states shared by the tree and its modules
- Validated module descriptions (construction input)
- Runtime module records (registry entries)
- Tree configuration

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================
# LIFECYCLE STATE
# ============================================================

class State(Enum):
    """Lifecycle state of a module or of the whole tree."""

    OFF = "off"
    """Not started yet."""

    INITIALIZING = "initializing"
    """Init operation in flight."""

    UP = "up"
    """Initialized and running."""

    DEINITIALIZING = "deinitializing"
    """Deinit operation in flight."""

    DOWN = "down"
    """Torn down."""

    ERROR = "error"
    """An operation failed."""


SyncOrAsync = Union[Any, Awaitable[Any]]
InitOperation = Callable[[Dict[str, Any]], SyncOrAsync]
DeinitOperation = Callable[[], SyncOrAsync]


# ============================================================
# MODULE DESCRIPTION
# ============================================================

class ModuleDescription(BaseModel):
    """
    Caller-supplied description of one module.

    Plain mappings with the same keys are validated into this model
    when the tree is built.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    deps: List[str] = Field(default_factory=list)
    """Names of modules this one requires."""

    init: Callable[..., Any]
    """Receives a mapping of dependency name to data, returns this module's data."""

    deinit: Optional[Callable[..., Any]] = None
    """Teardown operation, no-op when omitted."""

    data: Any = None
    """Seed data, used instead of the init result when not None."""

    needed: bool = False
    """Whether the tree must bring this module up."""

    @field_validator("deps", mode="before")
    @classmethod
    def _default_deps(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("deps")
    @classmethod
    def _unique_deps(cls, value: List[str]) -> List[str]:
        # ordered set
        return list(dict.fromkeys(value))


def _noop() -> None:
    return None


# ============================================================
# MODULE RECORD
# ============================================================

@dataclass
class ModuleRecord:
    """Runtime registry entry for one module."""

    name: str
    init: InitOperation
    deinit: DeinitOperation = _noop
    dependencies: Tuple[str, ...] = ()
    dependants: List[str] = field(default_factory=list)
    seed_data: Any = None
    needed: bool = False

    # Mutable runtime fields
    state: State = State.OFF
    data: Any = None
    error: Optional[Exception] = None
    dependencies_to_load: int = 0
    dependants_to_unload: int = 0
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.reset()

    @classmethod
    def from_description(cls, name: str, description: ModuleDescription) -> "ModuleRecord":
        """Create a record from a validated description."""
        return cls(
            name=name,
            init=description.init,
            deinit=description.deinit or _noop,
            dependencies=tuple(description.deps),
            seed_data=description.data,
            needed=description.needed,
        )

    def reset(self) -> None:
        """Return runtime fields to their pre-init values."""
        self.state = State.OFF
        self.data = self.seed_data
        self.error = None
        self.dependencies_to_load = len(self.dependencies)
        self.dependants_to_unload = 0
        self.started_at = None
        self.stopped_at = None

    @property
    def is_ready_to_load(self) -> bool:
        """Check if every dependency is up."""
        return self.needed and self.dependencies_to_load == 0

    @property
    def is_ready_to_unload(self) -> bool:
        """Check if the module is up and no counted dependant is left."""
        return self.state == State.UP and self.dependants_to_unload <= 0

    @property
    def uptime_seconds(self) -> Optional[float]:
        """Seconds between init start and deinit end."""
        if self.started_at and self.stopped_at:
            return (self.stopped_at - self.started_at).total_seconds()
        return None


# ============================================================
# TREE CONFIGURATION
# ============================================================

LOG_FORMATS = ("text", "json")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class TreeConfig:
    """Configuration for a dependency tree."""

    allow_reinit: bool = False
    """Allow init() on a tree that already reached down."""

    configure_logging: bool = False
    """Attach a log handler to the depstree logger when the tree is created."""

    log_level: str = "INFO"
    """Logging level used by setup_logging."""

    log_format: str = "text"
    """Output format (text or json)."""

    correlation_id: Optional[str] = None
    """Correlation ID stamped on log lines."""

    history_size: int = 100
    """Number of tree state transitions kept."""

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "TreeConfig":
        """Load configuration from environment variables and an optional .env file."""
        load_dotenv(env_file, override=False)
        return cls(
            allow_reinit=_env_flag("DEPSTREE_ALLOW_REINIT", "false"),
            configure_logging=_env_flag("DEPSTREE_CONFIGURE_LOGGING", "false"),
            log_level=os.getenv("DEPSTREE_LOG_LEVEL", "INFO"),
            log_format=os.getenv("DEPSTREE_LOG_FORMAT", "text"),
            correlation_id=os.getenv("DEPSTREE_CORRELATION_ID"),
            history_size=int(os.getenv("DEPSTREE_HISTORY_SIZE", "100")),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.log_format not in LOG_FORMATS:
            errors.append(f"log_format must be one of {', '.join(LOG_FORMATS)}")

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"unknown log_level: {self.log_level}")

        if self.history_size < 1:
            errors.append("history_size must be at least 1")

        return errors


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "State",
    "SyncOrAsync",
    "InitOperation",
    "DeinitOperation",
    "ModuleDescription",
    "ModuleRecord",
    "TreeConfig",
]
