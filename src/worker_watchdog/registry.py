"""Worker registry collaborators.

`WorkerRegistry` is the interface the controller consumes. It mirrors the
host's worker container: register a worker source, expose the active
controller, announce controller changes and relay worker messages.

`InProcessWorkerRegistry` is the registry used by the CLI and the tests. A
worker source is an import path (``package.module:callable``) naming a
coroutine function that runs as a long-lived task on the event loop.
"""

from __future__ import annotations

import asyncio
import importlib
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from .errors import NotSupportedError, SecurityError, TransientRegistrationFailure
from .logger import get_logger

_LOGGER = get_logger("registry")

Message = dict[str, Any]
MessageListener = Callable[[Message], None]
ControllerListener = Callable[[], None]

HEARTBEAT_INTERVAL_S = 60.0


@runtime_checkable
class Registration(Protocol):
    """Handle for one registered worker."""

    @property
    def scope(self) -> str: ...

    async def unregister(self) -> bool: ...


@runtime_checkable
class WorkerRegistry(Protocol):
    """Host worker container, as seen by the registration controller."""

    @property
    def controller(self) -> object | None: ...

    async def register(self, source: str) -> Registration: ...

    async def wait_for_controller(self) -> None:
        """Return once a controller is active (immediately if one already is)."""
        ...

    async def registrations(self) -> list[Registration]: ...

    def add_message_listener(self, listener: MessageListener) -> None: ...

    def add_controller_listener(self, listener: ControllerListener) -> None: ...

    def remove_message_listener(self, listener: MessageListener) -> None: ...

    def remove_controller_listener(self, listener: ControllerListener) -> None: ...


class WorkerClient:
    """Handed to a running worker so it can message the page."""

    def __init__(self, registry: InProcessWorkerRegistry, source: str):
        self._registry = registry
        self.source = source

    def post_message(self, message: Message) -> None:
        self._registry.deliver_message(message)


class InProcessRegistration:
    def __init__(self, registry: InProcessWorkerRegistry, source: str, scope: str):
        self._registry = registry
        self.source = source
        self.scope = scope
        self.task: asyncio.Task[None] | None = None

    async def unregister(self) -> bool:
        return await self._registry._unregister(self)

    def __repr__(self) -> str:
        return f"InProcessRegistration(source={self.source!r}, active={self.task is not None})"


class InProcessWorkerRegistry:
    """
    Runs workers as tasks on the current event loop.

    Rejections follow the host container's error names:
    • malformed source or non-callable target → NotSupportedError
    • module outside the allowed prefixes     → SecurityError
    • import failure                          → TransientRegistrationFailure
    """

    def __init__(
        self,
        allowed_prefixes: tuple[str, ...] = ("worker_watchdog.",),
        activation_delay_s: float = 0.0,
    ):
        self.allowed_prefixes = allowed_prefixes
        self.activation_delay_s = activation_delay_s
        self._registrations: dict[str, InProcessRegistration] = {}
        self._controller: InProcessRegistration | None = None
        self._activated = asyncio.Event()
        self._message_listeners: list[MessageListener] = []
        self._controller_listeners: list[ControllerListener] = []

    # ------------------------------------------------------------------
    # WorkerRegistry
    # ------------------------------------------------------------------

    @property
    def controller(self) -> InProcessRegistration | None:
        return self._controller

    async def register(self, source: str) -> InProcessRegistration:
        module_name, _, attr = source.partition(":")
        if not module_name or not attr:
            raise NotSupportedError("Worker source must look like 'package.module:callable'", source=source)

        if not module_name.startswith(self.allowed_prefixes):
            raise SecurityError("Worker source is outside the allowed scope", source=source)

        existing = self._registrations.get(source)
        if existing is not None:
            return existing

        try:
            module = importlib.import_module(module_name)
        except ImportError as err:
            raise TransientRegistrationFailure(f"Worker module failed to import: {err}", source=source) from err

        worker = getattr(module, attr, None)
        if not callable(worker):
            raise NotSupportedError(f"Worker target {attr!r} is not callable", source=source)

        registration = InProcessRegistration(self, source, scope=module_name)
        self._registrations[source] = registration
        asyncio.get_running_loop().call_later(
            self.activation_delay_s, self._activate, registration, worker
        )
        _LOGGER.debug("Worker %s registered (activation in %.1fs)", source, self.activation_delay_s)
        return registration

    async def wait_for_controller(self) -> None:
        await self._activated.wait()

    async def registrations(self) -> list[InProcessRegistration]:
        return list(self._registrations.values())

    def add_message_listener(self, listener: MessageListener) -> None:
        self._message_listeners.append(listener)

    def remove_message_listener(self, listener: MessageListener) -> None:
        if listener in self._message_listeners:
            self._message_listeners.remove(listener)

    def add_controller_listener(self, listener: ControllerListener) -> None:
        self._controller_listeners.append(listener)

    def remove_controller_listener(self, listener: ControllerListener) -> None:
        if listener in self._controller_listeners:
            self._controller_listeners.remove(listener)

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def deliver_message(self, message: Message) -> None:
        """Dispatch a worker message to page listeners on the next loop turn."""
        loop = asyncio.get_running_loop()
        for listener in list(self._message_listeners):
            loop.call_soon(listener, message)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _activate(
        self,
        registration: InProcessRegistration,
        worker: Callable[[WorkerClient], Awaitable[None]],
    ) -> None:
        if self._registrations.get(registration.source) is not registration:
            return  # unregistered before activation

        registration.task = asyncio.get_running_loop().create_task(
            worker(WorkerClient(self, registration.source))
        )
        self._controller = registration
        self._activated.set()
        _LOGGER.info("Worker %s is now the active controller", registration.source)

        for listener in list(self._controller_listeners):
            try:
                listener()
            except Exception:
                _LOGGER.exception("Controller-change listener failed")

    async def _unregister(self, registration: InProcessRegistration) -> bool:
        if self._registrations.get(registration.source) is not registration:
            return False

        del self._registrations[registration.source]
        if registration.task is not None:
            registration.task.cancel()
            try:
                await registration.task
            except asyncio.CancelledError:
                pass
            except Exception:
                _LOGGER.exception("Worker %s failed while stopping", registration.source)
            registration.task = None

        if self._controller is registration:
            self._controller = None
            self._activated.clear()

        _LOGGER.info("Worker %s unregistered", registration.source)
        return True


async def heartbeat_worker(client: WorkerClient, interval_s: float = HEARTBEAT_INTERVAL_S) -> None:
    """Minimal long-lived worker: reports liveness as progress messages."""
    beat = 0
    while True:
        beat += 1
        client.post_message({"method": "progress", "params": {"done": beat, "total": None}})
        await asyncio.sleep(interval_s)
