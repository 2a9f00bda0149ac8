"""
Depstree - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the lifecycle coordinator.

- Provides clear exception hierarchy
- Separates construction errors from runtime module errors
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
DepsTreeException (base)
├── ConfigurationError
├── GraphError
│   ├── BrokenDependencyError
│   └── CyclicDependencyError
├── InvalidStateError
├── ModuleError
│   ├── ModuleInitError
│   └── ModuleDeinitError
└── TreeInitError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, the tree cannot reach its target state."""

    CRITICAL = "critical"
    """The tree cannot be built at all."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class DepsTreeException(Exception):
    """
    Base exception for all depstree errors.

    All exceptions carry:
    - severity: how bad it is
    - context: for debugging
    - cause: the wrapped exception, if any
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause is not None:
            self.__cause__ = cause
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause is not None else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        if ctx_str:
            line = f"{line} | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(DepsTreeException):
    """Invalid tree configuration or module description."""

    default_severity = Severity.CRITICAL

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key

        super().__init__(message, context=context, **kwargs)


# ============================================================
# GRAPH ERRORS
# ============================================================

class GraphError(DepsTreeException):
    """Base class for dependency graph errors raised at construction."""

    default_severity = Severity.CRITICAL


class BrokenDependencyError(GraphError):
    """A module depends on a name that is not registered."""

    def __init__(self, module_name: str, dependency: str):
        super().__init__(
            message=f'Broken dependency "{dependency}" of module "{module_name}"',
            context={"module": module_name, "dependency": dependency},
        )
        self.module_name = module_name
        self.dependency = dependency


class CyclicDependencyError(GraphError):
    """The needed part of the graph contains a cycle."""

    def __init__(self, cycle: List[str]):
        path = " -> ".join(cycle)
        super().__init__(
            message=f"Circular dependency detected: {path}",
            context={"cycle": path},
        )
        self.cycle = list(cycle)


# ============================================================
# STATE ERRORS
# ============================================================

class InvalidStateError(DepsTreeException):
    """init() or deinit() called in a tree state that forbids it."""

    default_severity = Severity.MEDIUM

    def __init__(self, operation: str, state: Any):
        state_value = getattr(state, "value", state)
        super().__init__(
            message=f"Cannot {operation} tree in state {state_value}",
            context={"operation": operation, "state": state_value},
        )
        self.operation = operation
        self.state = state


# ============================================================
# MODULE ERRORS
# ============================================================

class ModuleError(DepsTreeException):
    """Base class for failures of a module's own operations."""

    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        module_name: str,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        context["module"] = module_name
        super().__init__(message, context=context, **kwargs)
        self.module_name = module_name


class ModuleInitError(ModuleError):
    """A module's init operation failed."""

    def __init__(self, module_name: str, cause: BaseException):
        super().__init__(
            message=f"Module init failed: {module_name}: {cause}",
            module_name=module_name,
            cause=cause,
        )


class ModuleDeinitError(ModuleError):
    """A module's deinit operation failed."""

    default_severity = Severity.MEDIUM

    def __init__(self, module_name: str, cause: BaseException):
        super().__init__(
            message=f"Module deinit failed: {module_name}: {cause}",
            module_name=module_name,
            cause=cause,
        )


class TreeInitError(DepsTreeException):
    """
    Rejection of an init handle.

    Raised into the pending init future when the tree starts
    deinitializing before every needed module came up.
    """

    default_severity = Severity.HIGH

    def __init__(self, errors: Optional[List[ModuleError]] = None):
        errors = list(errors or [])
        if errors:
            failed = ", ".join(e.module_name for e in errors)
            message = f"Tree initialization failed: {failed}"
        else:
            message = "Tree initialization aborted by deinit"
        super().__init__(
            message=message,
            context={"error_count": len(errors)},
            cause=errors[0] if errors else None,
        )
        self.errors = errors


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "Severity",
    "DepsTreeException",
    "ConfigurationError",
    "GraphError",
    "BrokenDependencyError",
    "CyclicDependencyError",
    "InvalidStateError",
    "ModuleError",
    "ModuleInitError",
    "ModuleDeinitError",
    "TreeInitError",
]
