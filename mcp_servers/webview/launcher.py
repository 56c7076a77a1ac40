from __future__ import annotations

import contextlib
import json
import logging
import socket
import subprocess
import time
from dataclasses import dataclass
from urllib.error import URLError
from urllib.request import Request, urlopen

from .config import BridgeConfig

logger = logging.getLogger("mcp.webview.launcher")


@dataclass
class LaunchResult:
    command: list[str]
    started: bool
    message: str


class AppLauncher:
    """Starts (or attaches to) the desktop application's CDP endpoint."""

    def __init__(self, config: BridgeConfig | None = None) -> None:
        self.config = config or BridgeConfig.from_env()
        self.process: subprocess.Popen | None = None

    def cdp_ready(self, timeout: float = 0.4) -> bool:
        """Return True if the CDP HTTP endpoint responds."""
        try:
            with urlopen(f"{self.config.cdp_endpoint}/json/version", timeout=timeout) as resp:
                return resp.status == 200
        except (OSError, TimeoutError, URLError):
            return False

    def cdp_version(self, timeout: float = 0.8) -> dict:
        endpoint = f"{self.config.cdp_endpoint}/json/version"
        try:
            req = Request(endpoint, headers={"User-Agent": "webview-mcp"})
            with urlopen(req, timeout=timeout) as resp:
                return json.loads(resp.read().decode())
        except URLError as exc:
            raise RuntimeError(f"CDP not reachable on port {self.config.cdp_port}: {exc}") from exc

    def _port_available(self, timeout: float = 0.2) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            try:
                return sock.connect_ex((self.config.cdp_host, self.config.cdp_port)) != 0
            except OSError:
                return False

    def build_launch_command(self) -> list[str]:
        cmd = list(self.config.app_command)
        if not any(arg.startswith("--remote-debugging-port") for arg in cmd):
            cmd.append(f"--remote-debugging-port={self.config.cdp_port}")
        return cmd

    def ensure_running(self, timeout: float = 10.0) -> LaunchResult:
        if self.cdp_ready():
            return LaunchResult([], False, f"Attached to existing app on CDP port {self.config.cdp_port}")

        if not self.config.app_command:
            if self._port_available():
                return LaunchResult(
                    [],
                    False,
                    f"No app listening on CDP port {self.config.cdp_port} "
                    "(start it with --remote-debugging-port or set MCP_WEBVIEW_APP_COMMAND)",
                )
            return LaunchResult(
                [], False, f"Port {self.config.cdp_port} is in use but CDP is not reachable"
            )

        if not self._port_available():
            return LaunchResult([], False, f"Port {self.config.cdp_port} already in use")

        cmd = self.build_launch_command()
        try:
            self.process = subprocess.Popen(  # noqa: S603
                cmd, stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
            )
        except OSError as exc:
            return LaunchResult(cmd, False, str(exc))

        deadline = time.time() + timeout
        while time.time() < deadline:
            if self.cdp_ready():
                logger.info("app launched pid=%s cdp=%s", self.process.pid, self.config.cdp_endpoint)
                return LaunchResult(cmd, True, "App launched")
            if self.process.poll() is not None:
                return LaunchResult(cmd, False, f"App exited with code {self.process.returncode}")
            time.sleep(0.1)
        return LaunchResult(cmd, False, "App launch timed out")

    def stop(self, *, timeout: float = 2.0) -> bool:
        """Best-effort stop of the launcher-owned process."""
        proc = self.process
        if proc is None:
            return False
        if proc.poll() is not None:
            return True
        with contextlib.suppress(Exception):
            proc.terminate()
        try:
            proc.wait(timeout=max(0.1, float(timeout)))
        except subprocess.TimeoutExpired:
            with contextlib.suppress(Exception):
                proc.kill()
        return True

    @staticmethod
    def find_free_port() -> int:
        with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
            s.bind(("127.0.0.1", 0))
            return s.getsockname()[1]


__all__ = ["AppLauncher", "LaunchResult"]
