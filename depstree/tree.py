"""
Depstree - Tree.

============================================================
RESPONSIBILITY
============================================================
Brings a set of interdependent modules up and down.

- init(): start every needed module once all its dependencies are up
- deinit(): stop every started module once all its started dependants are down
- Roll back the whole tree on any module init failure
- Report every module failure to observers

============================================================
SCHEDULING
============================================================
Single event loop, no locks. Bookkeeping (counters, states,
readiness checks) never awaits; only a module's own init or
deinit operation suspends, each inside its own task.

Readiness countdowns per module:
- dependencies_to_load: dependencies not yet up
- dependants_to_unload: started dependants not yet torn down

Tree countdowns:
- modules_to_load: needed modules not yet up
- modules_to_unload: started modules not yet torn down

============================================================
"""

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Set

from .log import setup_logging
from .models import State, ModuleRecord, TreeConfig
from .registry import DescriptionInput, ModuleRegistry
from .events import EventHub, Listener, TreeEvent
from .state_machine import StateTransition, TreeStateMachine
from .exceptions import (
    ConfigurationError,
    InvalidStateError,
    ModuleDeinitError,
    ModuleError,
    ModuleInitError,
    TreeInitError,
)


async def _resolve(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# DEPS TREE
# ============================================================

class DepsTree:
    """
    Dependency-ordered lifecycle coordinator.

    Example::

        tree = DepsTree({
            "db": {"init": connect, "deinit": disconnect},
            "api": {"deps": ["db"], "init": start_api, "needed": True},
        })
        await tree.init()
        ...
        await tree.deinit()
    """

    def __init__(
        self,
        modules: Mapping[str, DescriptionInput],
        config: Optional[TreeConfig] = None,
    ):
        """
        Build the tree.

        Args:
            modules: Mapping of module name to description
            config: Tree configuration

        Raises:
            ConfigurationError: If the configuration or a description is invalid
            BrokenDependencyError: If a dependency name is not registered
            CyclicDependencyError: If needed modules form a cycle
        """
        self._config = config or TreeConfig()

        errors = self._config.validate()
        if errors:
            raise ConfigurationError(
                message=f"Invalid configuration: {', '.join(errors)}",
            )

        if self._config.configure_logging:
            setup_logging(
                level=self._config.log_level,
                log_format=self._config.log_format,
                correlation_id=self._config.correlation_id,
            )
        self._logger = logging.getLogger(__name__)

        self._registry = ModuleRegistry.build(modules)
        self._events = EventHub()
        self._machine = TreeStateMachine(
            on_change=self._on_state_change,
            max_history=self._config.history_size,
        )

        self._errors: List[ModuleError] = []
        self._modules_to_load = 0
        self._modules_to_unload = 0
        self._init_future: Optional[asyncio.Future] = None
        self._deinit_future: Optional[asyncio.Future] = None
        self._tasks: Set[asyncio.Task] = set()

        self._logger.debug(
            f"Tree built | modules={len(self._registry)} | "
            f"needed={len(self._registry.needed_records())}"
        )

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def config(self) -> TreeConfig:
        """Get configuration."""
        return self._config

    @property
    def state(self) -> State:
        """Get current tree state."""
        return self._machine.state

    @property
    def errors(self) -> List[ModuleError]:
        """Errors captured so far, oldest first."""
        return list(self._errors)

    @property
    def module_names(self) -> List[str]:
        """Registered module names."""
        return list(self._registry)

    @property
    def events(self) -> EventHub:
        """Get the observer registry."""
        return self._events

    # --------------------------------------------------------
    # Observers
    # --------------------------------------------------------

    def register_listener(self, event: TreeEvent, listener: Listener) -> None:
        """Register a listener for one event kind."""
        self._events.register_listener(event, listener)

    def unregister_listener(self, event: TreeEvent, listener: Listener) -> None:
        """Unregister a listener."""
        self._events.unregister_listener(event, listener)

    # --------------------------------------------------------
    # Introspection
    # --------------------------------------------------------

    def get_module_state(self, name: str) -> State:
        return self._registry[name].state

    def get_module_data(self, name: str) -> Any:
        return self._registry[name].data

    def get_module_error(self, name: str) -> Optional[Exception]:
        return self._registry[name].error

    def is_needed(self, name: str) -> bool:
        return self._registry[name].needed

    def get_history(self, limit: int = 10) -> List[StateTransition]:
        """Get tree state transition history."""
        return self._machine.get_history(limit)

    def get_status_summary(self) -> Dict[str, Any]:
        """Get summary of tree and module states."""
        status_counts = {
            state.value: len(self._registry.in_state(state)) for state in State
        }

        return {
            "state": self.state.value,
            "total_modules": len(self._registry),
            "needed_modules": len(self._registry.needed_records()),
            "status_counts": status_counts,
            "modules_to_load": self._modules_to_load,
            "modules_to_unload": self._modules_to_unload,
            "errors": len(self._errors),
        }

    # --------------------------------------------------------
    # Public lifecycle
    # --------------------------------------------------------

    def init(self) -> "asyncio.Future[None]":
        """
        Init all needed modules and their dependencies.

        Calling it on an initializing tree returns the same future as the
        first call. On a tree that is already up the future is resolved
        immediately. If the tree starts deinitializing before every needed
        module is up, the future is rejected with TreeInitError.

        Raises:
            InvalidStateError: If the tree is deinitializing, down or in error
                (down is allowed when config.allow_reinit is set)
        """
        state = self.state

        if state == State.INITIALIZING:
            return self._init_future
        if state == State.UP:
            return self._resolved_future()
        if state == State.DOWN and self._config.allow_reinit:
            self._reset()
        elif state != State.OFF:
            raise InvalidStateError(operation="init", state=state)

        loop = asyncio.get_running_loop()
        self._init_future = loop.create_future()
        self._modules_to_load = 0
        self._machine.transition_to(State.INITIALIZING, reason="init requested", operation="init")
        loop.call_soon(self._start_init_cycle)
        return self._init_future

    def deinit(self) -> "asyncio.Future[None]":
        """
        Deinit every started module, dependants first.

        Calling it on a deinitializing tree returns the same future as the
        first call. On an off tree, the tree moves straight to down. The
        future always resolves once the tree is down, even if some deinit
        operations failed.
        """
        state = self.state

        if state == State.DEINITIALIZING:
            return self._deinit_future
        if state == State.OFF:
            future = self._resolved_future()
            self._machine.transition_to(State.DOWN, reason="deinit before init", operation="deinit")
            return future
        if state in (State.DOWN, State.ERROR):
            return self._resolved_future()

        # INITIALIZING or UP
        loop = asyncio.get_running_loop()
        self._deinit_future = loop.create_future()
        self._machine.transition_to(State.DEINITIALIZING, reason="deinit requested", operation="deinit")
        self._reject_pending_init()

        for record in self._registry.records():
            if record.is_ready_to_unload:
                self._deinit_module(record)

        self._check_unloaded()
        return self._deinit_future

    async def __aenter__(self) -> "DepsTree":
        try:
            await self.init()
        except TreeInitError:
            await self.deinit()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.deinit()

    # --------------------------------------------------------
    # Init scheduler
    # --------------------------------------------------------

    def _start_init_cycle(self) -> None:
        if self.state != State.INITIALIZING:
            return

        needed = self._registry.needed_records()
        self._modules_to_load = len(needed)
        if not needed:
            self._finish_init()
            return

        for record in needed:
            if record.dependencies_to_load == 0:
                self._init_module(record)

    def _init_module(self, record: ModuleRecord) -> None:
        record.started_at = _utcnow()
        self._change_module_state(record, State.INITIALIZING)
        self._modules_to_unload += 1
        for dep_name in record.dependencies:
            self._registry[dep_name].dependants_to_unload += 1
        self._spawn(self._run_init(record), f"depstree-init-{record.name}")

    async def _run_init(self, record: ModuleRecord) -> None:
        dependencies = MappingProxyType({
            dep_name: self._registry[dep_name].data
            for dep_name in record.dependencies
        })
        try:
            data = await _resolve(record.init(dependencies))
        except Exception as e:
            self._module_init_failed(record, e)
            return

        if record.data is None:
            record.data = data
        self._module_inited(record)

    def _module_inited(self, record: ModuleRecord) -> None:
        if self.state not in (State.INITIALIZING, State.DEINITIALIZING):
            raise RuntimeError(f"Module {record.name} finished init while tree is {self.state.value}")

        self._change_module_state(record, State.UP)
        self._logger.info(f"Module up: {record.name}")

        # re-read: a listener may have called deinit() during the notification
        if self.state == State.DEINITIALIZING:
            self._deinit_module(record)
            return

        self._modules_to_load -= 1
        if self._modules_to_load == 0:
            self._finish_init()
            return

        for dependant_name in record.dependants:
            dependant = self._registry[dependant_name]
            dependant.dependencies_to_load -= 1
            if dependant.is_ready_to_load:
                self._init_module(dependant)

    def _module_init_failed(self, record: ModuleRecord, cause: Exception) -> None:
        was_deinitializing = self.state == State.DEINITIALIZING

        self._modules_to_unload -= 1
        released = []
        for dep_name in record.dependencies:
            dependency = self._registry[dep_name]
            dependency.dependants_to_unload -= 1
            released.append(dependency)

        error = ModuleInitError(record.name, cause)
        record.error = error
        self._change_module_state(record, State.ERROR)
        self._error(error, record.name)

        if was_deinitializing:
            for dependency in released:
                if dependency.is_ready_to_unload:
                    self._deinit_module(dependency)
            self._check_unloaded()

    def _finish_init(self) -> None:
        if self._init_future is not None and not self._init_future.done():
            self._init_future.set_result(None)
        self._machine.transition_to(State.UP, reason="all needed modules up")

    def _reject_pending_init(self) -> None:
        if self._init_future is None or self._init_future.done():
            return
        init_errors = [e for e in self._errors if isinstance(e, ModuleInitError)]
        self._logger.warning(
            f"Rolling back initialization | failed={[e.module_name for e in init_errors]}"
        )
        self._init_future.set_exception(TreeInitError(init_errors))
        # Callers may only await deinit(); mark the rejection as retrieved.
        self._init_future.exception()

    # --------------------------------------------------------
    # Deinit scheduler
    # --------------------------------------------------------

    def _deinit_module(self, record: ModuleRecord) -> None:
        if record.state != State.UP:
            return
        self._change_module_state(record, State.DEINITIALIZING)
        self._spawn(self._run_deinit(record), f"depstree-deinit-{record.name}")

    async def _run_deinit(self, record: ModuleRecord) -> None:
        try:
            await _resolve(record.deinit())
        except Exception as e:
            record.stopped_at = _utcnow()
            error = ModuleDeinitError(record.name, e)
            record.error = error
            self._change_module_state(record, State.ERROR)
            self._error(error, record.name)
        else:
            record.stopped_at = _utcnow()
            self._change_module_state(record, State.DOWN)
            self._logger.info(
                f"Module down: {record.name} | uptime_seconds={record.uptime_seconds}"
            )

        self._modules_to_unload -= 1
        if self._modules_to_unload <= 0:
            self._finish_deinit()
            return

        for dep_name in record.dependencies:
            dependency = self._registry[dep_name]
            dependency.dependants_to_unload -= 1
            if dependency.is_ready_to_unload:
                self._deinit_module(dependency)

    def _check_unloaded(self) -> None:
        if self.state == State.DEINITIALIZING and self._modules_to_unload <= 0:
            self._finish_deinit()

    def _finish_deinit(self) -> None:
        if self.state != State.DEINITIALIZING:
            return
        if self._deinit_future is not None and not self._deinit_future.done():
            self._deinit_future.set_result(None)
        self._machine.transition_to(State.DOWN, reason="all modules down")

    # --------------------------------------------------------
    # Error / rollback
    # --------------------------------------------------------

    def _error(self, error: ModuleError, module_name: str = "") -> None:
        self._errors.append(error)
        self._events.report_error(error, module_name)
        self.deinit()

    # --------------------------------------------------------
    # Helpers
    # --------------------------------------------------------

    def _change_module_state(self, record: ModuleRecord, state: State) -> None:
        self._logger.debug(f"Module state: {record.name} {record.state.value} -> {state.value}")
        record.state = state
        self._events.emit(TreeEvent.MODULE_STATE, record.name, state)

    def _on_state_change(self, transition: StateTransition) -> None:
        self._events.emit(TreeEvent.STATE, transition.to_state)
        if transition.to_state == State.UP:
            self._events.emit(TreeEvent.STARTED)
        elif transition.to_state == State.DOWN:
            self._events.emit(TreeEvent.STOPPED)

    def _resolved_future(self) -> "asyncio.Future[None]":
        future = asyncio.get_running_loop().create_future()
        future.set_result(None)
        return future

    def _spawn(self, coro: Awaitable[None], name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error(
                f"Scheduler task failed | task={task.get_name()} | {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    def _reset(self) -> None:
        self._logger.info("Resetting tree for a new init cycle")
        self._registry.reset()
        self._errors.clear()
        self._modules_to_load = 0
        self._modules_to_unload = 0
        self._init_future = None
        self._deinit_future = None

    def __repr__(self) -> str:
        return f"DepsTree(state={self.state.value}, modules={len(self._registry)})"


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "DepsTree",
]
