"""Lifecycle control of the managed proxy service."""

from __future__ import annotations

import enum
import logging
import subprocess
import sys
from typing import Protocol

logger = logging.getLogger("dnsquerylog.service")

COMMAND_TIMEOUT = 30  # seconds


class ServiceState(enum.Enum):
    NOT_INSTALLED = "not_installed"
    STOPPED = "stopped"
    RUNNING = "running"


class ServiceLifecycleClient(Protocol):
    """Operations the monitor needs from the proxy service.

    All calls return as soon as the command was issued; a True result does not
    mean the service finished installing, starting or restarting.
    """

    def is_installed(self) -> bool: ...

    def is_running(self) -> bool: ...

    def install(self) -> bool: ...

    def start(self) -> bool: ...

    def restart(self) -> bool: ...


def service_state(client: ServiceLifecycleClient) -> ServiceState:
    if not client.is_installed():
        return ServiceState.NOT_INSTALLED
    if client.is_running():
        return ServiceState.RUNNING
    return ServiceState.STOPPED


class ProxyService:
    """dnscrypt-proxy controlled through its ``-service`` flag.

    State is read from launchd on macOS and systemd elsewhere.
    """

    def __init__(self, binary: str, config_file: str, service_name: str = "dnscrypt-proxy") -> None:
        self.binary = binary
        self.config_file = config_file
        self.service_name = service_name

    def _run(self, args: list[str], timeout: float = COMMAND_TIMEOUT) -> subprocess.CompletedProcess | None:
        try:
            return subprocess.run(args, capture_output=True, text=True, timeout=timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Command %s failed: %s", args[0], e)
            return None

    def _service_command(self, action: str) -> bool:
        result = self._run([self.binary, "-config", self.config_file, "-service", action])
        if result is None:
            return False
        if result.returncode != 0:
            logger.warning(
                "%s -service %s exited with %d: %s",
                self.binary, action, result.returncode, result.stderr.strip(),
            )
            return False
        logger.info("Issued service %s for %s", action, self.service_name)
        return True

    def is_installed(self) -> bool:
        if sys.platform == "darwin":
            result = self._run(["launchctl", "list", self.service_name], timeout=5)
            return result is not None and result.returncode == 0
        result = self._run(["systemctl", "is-enabled", self.service_name], timeout=5)
        # is-enabled exits non-zero for "disabled" units too; only a missing unit is not installed
        if result is None:
            return False
        return result.returncode == 0 or result.stdout.strip() in ("disabled", "static", "indirect")

    def is_running(self) -> bool:
        if sys.platform == "darwin":
            result = self._run(["launchctl", "list", self.service_name], timeout=5)
            if result is None or result.returncode != 0:
                return False
            return '"PID" =' in result.stdout
        result = self._run(["systemctl", "is-active", self.service_name], timeout=5)
        return result is not None and result.returncode == 0

    def install(self) -> bool:
        return self._service_command("install")

    def start(self) -> bool:
        return self._service_command("start")

    def restart(self) -> bool:
        return self._service_command("restart")
