"""
Depstree - Module Registry.

============================================================
RESPONSIBILITY
============================================================
Builds the module graph once, at tree construction.

- Validate module descriptions
- Link dependency and dependant edges
- Mark the transitive needed closure
- Detect cycles inside the needed closure

Modules are never added or removed after build().

============================================================
"""

import logging
from typing import Any, Dict, Iterator, List, Mapping, Set, Union

from pydantic import ValidationError

from .models import ModuleDescription, ModuleRecord, State
from .exceptions import (
    BrokenDependencyError,
    ConfigurationError,
    CyclicDependencyError,
)


logger = logging.getLogger(__name__)


DescriptionInput = Union[ModuleDescription, Mapping[str, Any]]


def coerce_description(name: str, value: DescriptionInput) -> ModuleDescription:
    """Validate a raw mapping into a ModuleDescription."""
    if isinstance(value, ModuleDescription):
        return value
    if not isinstance(value, Mapping):
        raise ConfigurationError(
            message=f"Module {name} must be described by a mapping, got {type(value).__name__}",
            config_key=name,
        )
    try:
        return ModuleDescription.model_validate(dict(value))
    except ValidationError as e:
        raise ConfigurationError(
            message=f"Invalid description for module {name}: {e.error_count()} error(s)",
            config_key=name,
            cause=e,
        )


# ============================================================
# MODULE REGISTRY
# ============================================================

class ModuleRegistry:
    """
    Name-keyed store of module records.

    Handles:
    - Edge construction (dependencies and their inverse)
    - Needed-closure resolution
    - Runtime record lookup for the schedulers
    """

    def __init__(self):
        self._modules: Dict[str, ModuleRecord] = {}

    @classmethod
    def build(cls, descriptions: Mapping[str, DescriptionInput]) -> "ModuleRegistry":
        """
        Build a registry from module descriptions.

        Args:
            descriptions: Mapping of module name to description

        Returns:
            Registry with edges linked and needed flags resolved

        Raises:
            ConfigurationError: If a description is invalid
            BrokenDependencyError: If a dependency name is not registered
            CyclicDependencyError: If needed modules depend on each other in a cycle
        """
        registry = cls()

        for name, value in descriptions.items():
            description = coerce_description(name, value)
            registry._modules[name] = ModuleRecord.from_description(name, description)
            logger.debug(f"Registered module: {name} | deps={list(description.deps)}")

        registry._link_dependants()
        registry.resolve_needed()

        return registry

    def _link_dependants(self) -> None:
        for name, record in self._modules.items():
            for dep_name in record.dependencies:
                dependency = self._modules.get(dep_name)
                if dependency is None:
                    raise BrokenDependencyError(module_name=name, dependency=dep_name)
                dependency.dependants.append(name)

    def resolve_needed(self) -> None:
        """
        Mark every module transitively required by a needed module.

        Raises:
            CyclicDependencyError: If a module is reached again while still on the walk
        """
        visiting: List[str] = []
        on_path: Set[str] = set()
        done: Set[str] = set()

        def visit(name: str) -> None:
            if name in on_path:
                start = visiting.index(name)
                raise CyclicDependencyError(visiting[start:] + [name])
            if name in done:
                return

            visiting.append(name)
            on_path.add(name)

            record = self._modules[name]
            if not record.needed:
                logger.debug(f"Module {name} needed by {visiting[-2]}")
            record.needed = True
            for dep_name in record.dependencies:
                visit(dep_name)

            visiting.pop()
            on_path.discard(name)
            done.add(name)

        explicit = [name for name, record in self._modules.items() if record.needed]
        for name in explicit:
            visit(name)

    # --------------------------------------------------------
    # Lookup
    # --------------------------------------------------------

    def __getitem__(self, name: str) -> ModuleRecord:
        return self._modules[name]

    def __contains__(self, name: object) -> bool:
        return name in self._modules

    def __iter__(self) -> Iterator[str]:
        return iter(self._modules)

    def __len__(self) -> int:
        return len(self._modules)

    def records(self) -> List[ModuleRecord]:
        """All records in registration order."""
        return list(self._modules.values())

    def needed_records(self) -> List[ModuleRecord]:
        """Records the init scheduler must bring up."""
        return [r for r in self._modules.values() if r.needed]

    def in_state(self, *states: State) -> List[ModuleRecord]:
        """Records currently in any of the given states."""
        return [r for r in self._modules.values() if r.state in states]

    def reset(self) -> None:
        """Reset every record's runtime fields."""
        for record in self._modules.values():
            record.reset()


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "DescriptionInput",
    "coerce_description",
    "ModuleRegistry",
]
