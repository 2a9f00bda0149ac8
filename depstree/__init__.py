"""
Depstree Package - Dependency-Ordered Lifecycle Coordination.

============================================================
PACKAGE OVERVIEW
============================================================
Brings a set of named, interdependent modules up in dependency
order and tears them down in reverse, with automatic rollback
when any module fails to initialize.

============================================================
CORE PRINCIPLES
============================================================
1. A module inits only after every dependency is up
2. A module deinits only after every started dependant is down
3. Only needed modules (and what they need) are ever started
4. Any init failure rolls the whole tree back to down
5. Module errors are captured and reported, never raised through the scheduler

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                      DepsTree                       |
    |-----------------------------------------------------|
    |  ModuleRegistry    |  Edges + needed closure        |
    |  TreeStateMachine  |  off/initializing/up/...       |
    |  Init scheduler    |  dependencies_to_load countdown|
    |  Deinit scheduler  |  dependants_to_unload countdown|
    |  EventHub          |  module-state/state/started/   |
    |                    |  stopped/error listeners       |
    +-----------------------------------------------------+

============================================================
QUICK START
============================================================
::

    from depstree import DepsTree, TreeEvent

    tree = DepsTree({
        "config": {"init": load_config},
        "db": {"deps": ["config"], "init": connect, "deinit": disconnect},
        "api": {"deps": ["db"], "init": start_api, "needed": True},
    })
    tree.register_listener(TreeEvent.ERROR, lambda err, name: print(name, err))

    await tree.init()
    ...
    await tree.deinit()

============================================================
"""

from .models import (
    State,
    ModuleDescription,
    ModuleRecord,
    TreeConfig,
)
from .exceptions import (
    Severity,
    DepsTreeException,
    ConfigurationError,
    GraphError,
    BrokenDependencyError,
    CyclicDependencyError,
    InvalidStateError,
    ModuleError,
    ModuleInitError,
    ModuleDeinitError,
    TreeInitError,
)
from .registry import ModuleRegistry
from .events import TreeEvent, EventHub
from .state_machine import StateTransition, TreeStateMachine
from .log import JsonFormatter, setup_logging
from .tree import DepsTree


__version__ = "1.0.0"


__all__ = [
    # Models
    "State",
    "ModuleDescription",
    "ModuleRecord",
    "TreeConfig",

    # Exceptions
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

    # Registry
    "ModuleRegistry",

    # Events
    "TreeEvent",
    "EventHub",

    # State machine
    "StateTransition",
    "TreeStateMachine",

    # Logging
    "JsonFormatter",
    "setup_logging",

    # Tree
    "DepsTree",
]
