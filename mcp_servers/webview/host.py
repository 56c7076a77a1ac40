"""
Webview host entry point.

Attaches to (or launches) the desktop application over CDP, then serves the
socket protocol until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from .bus import EventBus
from .cdp import CdpEventBus
from .config import BridgeConfig, configure_logging
from .dispatch import CommandDispatcher
from .launcher import AppLauncher
from .transport import TransportListener

logger = logging.getLogger("mcp.webview.host")


async def run_host(
    config: BridgeConfig,
    *,
    bus: EventBus | None = None,
    stop_event: asyncio.Event | None = None,
    on_ready: asyncio.Future | None = None,
) -> None:
    """Serve until `stop_event` is set (or a termination signal arrives)."""
    bus = bus or CdpEventBus(config)
    dispatcher = CommandDispatcher(bus, config)
    listener = TransportListener(dispatcher, config)
    stop = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    installed: list[int] = []
    if stop_event is None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, stop.set)
                installed.append(sig)

    try:
        address = await listener.start()
        if on_ready is not None and not on_ready.done():
            on_ready.set_result(address)
        await stop.wait()
    finally:
        for sig in installed:
            with contextlib.suppress(Exception):
                loop.remove_signal_handler(sig)
        await listener.close()
        await bus.close()
        logger.info("host stopped")


def main() -> None:
    """Main entry point for the webview host."""
    config = BridgeConfig.from_env()
    configure_logging(config)

    launcher = AppLauncher(config)
    if config.app_command:
        result = launcher.ensure_running()
        logger.info("launch: %s", result.message)
    elif not launcher.cdp_ready():
        logger.warning("CDP endpoint %s is not reachable yet; windows will be resolved on demand", config.cdp_endpoint)

    try:
        asyncio.run(run_host(config))
    except KeyboardInterrupt:
        pass
    finally:
        launcher.stop()


if __name__ == "__main__":
    main()
