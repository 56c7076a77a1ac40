"""
Command registry and dispatcher.

The registry maps command names to either a native handler (answered by the
host) or a `WebviewCommand` (forwarded through the bridge). Each client
connection gets its own `DispatchSession`, which owns that connection's
`WebviewBridge` and therefore its pending-request table.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .bridge import WebviewBridge
from .bus import EventBus
from .commands import WEBVIEW_COMMANDS, WebviewCommand, normalize_params, window_label_of
from .config import BridgeConfig
from .errors import BridgeError, UnknownCommand
from .native import NATIVE_COMMANDS, NativeHandler
from .protocol import Request, Response
from .redaction import redact_params

logger = logging.getLogger("mcp.webview.dispatch")


class CommandRegistry:
    """Registry for command handlers."""

    def __init__(self) -> None:
        self._native: dict[str, NativeHandler] = {}
        self._webview: dict[str, WebviewCommand] = {}

    def register_native(self, name: str, handler: NativeHandler) -> None:
        self._webview.pop(name, None)
        self._native[name] = handler

    def register_webview(self, command: WebviewCommand) -> None:
        self._native.pop(command.name, None)
        self._webview[command.name] = command

    def native(self, name: str) -> NativeHandler | None:
        return self._native.get(name)

    def webview(self, name: str) -> WebviewCommand | None:
        return self._webview.get(name)

    def has(self, name: str) -> bool:
        return name in self._native or name in self._webview

    @property
    def command_names(self) -> list[str]:
        return sorted([*self._native, *self._webview])

    def __len__(self) -> int:
        return len(self._native) + len(self._webview)


def create_default_registry() -> CommandRegistry:
    registry = CommandRegistry()
    for name, handler in NATIVE_COMMANDS.items():
        registry.register_native(name, handler)
    for command in WEBVIEW_COMMANDS.values():
        registry.register_webview(command)
    return registry


class CommandDispatcher:
    """Shared, connection-independent part of dispatch."""

    def __init__(self, bus: EventBus, config: BridgeConfig, registry: CommandRegistry | None = None) -> None:
        self.bus = bus
        self.config = config
        self.registry = registry or create_default_registry()
        self._sessions = 0

    def open_session(self, name: str | None = None) -> DispatchSession:
        self._sessions += 1
        return DispatchSession(self, name or f"conn-{self._sessions}")


class DispatchSession:
    """Per-connection dispatch state. Close it when the connection goes away."""

    def __init__(self, dispatcher: CommandDispatcher, name: str) -> None:
        self.dispatcher = dispatcher
        self.name = name
        self.bridge = WebviewBridge(dispatcher.bus, name=name)

    async def handle(self, request: Request) -> Response:
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            data = await self.execute(request.command, request.params)
            response = Response.ok(request.id, data)
        except asyncio.CancelledError:
            raise
        except BridgeError as exc:
            response = Response.failure(request.id, exc)
        except Exception as exc:
            logger.exception("%s command=%s crashed", self.name, request.command)
            response = Response.failure(request.id, exc)

        elapsed_ms = int((loop.time() - started) * 1000)
        if response.success:
            logger.info(
                "%s command=%s ok ms=%d params=%s", self.name, request.command, elapsed_ms, redact_params(request.params)
            )
        else:
            logger.info(
                "%s command=%s failed kind=%s ms=%d error=%s params=%s",
                self.name,
                request.command,
                response.error_kind,
                elapsed_ms,
                response.error,
                redact_params(request.params),
            )
        return response

    async def execute(self, command: str, raw_params: Any) -> Any:
        registry = self.dispatcher.registry
        native = registry.native(command)
        delegated = registry.webview(command) if native is None else None
        if native is None and delegated is None:
            raise UnknownCommand(
                reason=f"Unknown command: {command}",
                suggestion="Use one of the supported commands",
                details={"available": registry.command_names},
            )

        params = normalize_params(command, raw_params)

        if native is not None:
            return await native(self, params)

        assert delegated is not None
        payload, timeout = delegated.prepare(params, self.dispatcher.config)
        label = await self.dispatcher.bus.resolve_label(window_label_of(params))
        data = await self.bridge.request(label, delegated.event, payload, timeout=timeout)
        if delegated.blocking:
            return await asyncio.to_thread(delegated.finish, data, params)
        return delegated.finish(data, params)

    def close(self) -> int:
        return self.bridge.close()


__all__ = ["CommandDispatcher", "CommandRegistry", "DispatchSession", "create_default_registry"]
