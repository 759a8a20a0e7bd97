"""Service directory: where units, logs, unit files and host facts come from.

The dashboard only sees the `ServiceDirectory` protocol. `SystemdDirectory`
implements it on top of the systemd manager (D-Bus or the systemctl CLI),
journalctl for live logs and psutil for host facts.
"""

from __future__ import annotations

import asyncio
import logging
import platform
import socket
import time
from asyncio.subprocess import PIPE
from typing import AsyncIterator, Protocol

import psutil
from dbus_next.errors import AuthError, DBusError, InvalidAddressError

from . import systemd_bus
from .config import Settings
from .dash.models import ActionKind, HostStats, Service

logger = logging.getLogger(__name__)

# Failures reaching the bus itself, as opposed to a method call rejected by systemd
BUS_ERRORS = (InvalidAddressError, AuthError, OSError)


class DirectoryError(Exception):
    """A collaborator call failed; `operation` names what was attempted."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(message)
        self.operation = operation
        self.message = message

    def __str__(self) -> str:
        return self.message


class LogStreamError(DirectoryError):
    pass


class LogStream(Protocol):
    def __aiter__(self) -> AsyncIterator[str]: ...

    async def close(self) -> None: ...


class ServiceDirectory(Protocol):
    async def list_services(self) -> tuple[Service, ...]: ...

    async def open_log_stream(self, name: str) -> LogStream: ...

    async def fetch_config_text(self, name: str) -> str: ...

    async def perform_action(self, kind: ActionKind, name: str) -> None: ...

    async def fetch_host_stats(self) -> HostStats: ...


# ---- subprocess helpers ----

async def run_command(argv: list[str]) -> tuple[int, str, str]:
    """Run a command to completion; returns (returncode, stdout, stderr).

    If the awaiting task is cancelled (e.g. by a timeout) the child is killed
    before the cancellation propagates.
    """
    proc = await asyncio.create_subprocess_exec(*argv, stdout=PIPE, stderr=PIPE)
    try:
        out, err = await proc.communicate()
    except asyncio.CancelledError:
        await _kill(proc)
        raise
    return proc.returncode or 0, out.decode(errors="ignore"), err.decode(errors="ignore")


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


class ProcessLogStream:
    """Line iterator over a long-running process' stdout.

    When the process exits with a failure status the iterator raises
    LogStreamError carrying the last line it wrote to stderr.
    """

    def __init__(self, proc: asyncio.subprocess.Process, program: str = "journalctl") -> None:
        self._proc = proc
        self._program = program

    async def __aiter__(self) -> AsyncIterator[str]:
        reader = self._proc.stdout
        if reader is None:
            return
        while True:
            b = await reader.readline()
            if not b:
                break
            yield b.decode(errors="ignore").rstrip("\n")
        tail = await self._stderr_tail()
        rc = await self._proc.wait()
        if rc != 0:
            raise LogStreamError("stream logs", tail or f"{self._program} exited with {rc}")

    async def _stderr_tail(self) -> str:
        if self._proc.stderr is None:
            return ""
        err = await self._proc.stderr.read()
        lines = err.decode(errors="ignore").strip().splitlines()
        return lines[-1].strip() if lines else ""

    async def close(self) -> None:
        await _kill(self._proc)


def parse_unit_listing(output: str) -> tuple[Service, ...]:
    """Parse `systemctl list-units --no-legend` rows: UNIT LOAD ACTIVE SUB DESCRIPTION."""
    services: list[Service] = []
    for line in output.splitlines():
        fields = line.split()
        # Failed units are flagged with a leading bullet unless --plain is used
        if fields and fields[0] in ("●", "*"):
            fields = fields[1:]
        if len(fields) < 5:
            continue
        services.append(
            Service(
                name=fields[0],
                load_state=fields[1],
                active_state=fields[2],
                sub_state=fields[3],
                description=" ".join(fields[4:]),
            )
        )
    return tuple(services)


def read_host_stats() -> HostStats:
    try:
        os_release = platform.freedesktop_os_release()
        platform_name = os_release.get("ID") or os_release.get("NAME") or platform.system()
    except OSError:
        platform_name = platform.system()
    uptime = max(0, int(time.time() - psutil.boot_time()))
    return HostStats(
        hostname=socket.gethostname(),
        platform_name=platform_name.lower(),
        uptime_seconds=uptime,
        kernel_version=platform.release(),
    )


class SystemdDirectory:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._bus = None
        self._manager = None
        self._lock = asyncio.Lock()

    # ---- argv builders ----

    def _systemctl(self, *args: str) -> list[str]:
        argv = ["systemctl"]
        if self.settings.user_scope:
            argv.append("--user")
        return argv + list(args)

    def journal_argv(self, name: str) -> list[str]:
        argv = ["journalctl"]
        if self.settings.user_scope:
            argv.append("--user")
        return argv + ["-f", "-u", name, "--no-pager", "-n", str(self.settings.journal_lines)]

    def config_argv(self, name: str) -> list[str]:
        return self._systemctl("cat", name, "--no-pager")

    def list_argv(self) -> list[str]:
        return self._systemctl("list-units", "--all", "--no-legend", "--no-pager", "--plain")

    # ---- D-Bus ----

    async def _get_manager(self):
        async with self._lock:
            if self._manager is None:
                self._bus = await systemd_bus.connect_bus(user=self.settings.user_scope)
                self._manager = await systemd_bus.get_manager(self._bus)
            return self._manager

    def _drop_bus(self) -> None:
        if self._bus is not None:
            self._bus.disconnect()
        self._bus = None
        self._manager = None

    async def close(self) -> None:
        self._drop_bus()

    # ---- ServiceDirectory ----

    async def list_services(self) -> tuple[Service, ...]:
        if self.settings.backend == "systemctl":
            rc, out, err = await self._run("list units", self.list_argv())
            if rc != 0:
                raise DirectoryError("list units", err.strip() or f"systemctl exited with {rc}")
            return parse_unit_listing(out)

        try:
            manager = await self._get_manager()
            units = await systemd_bus.list_units(manager)
        except DBusError as e:
            raise DirectoryError("list units", e.text) from e
        except BUS_ERRORS as e:
            self._drop_bus()
            raise DirectoryError("list units", str(e) or type(e).__name__) from e
        return tuple(
            Service(
                name=u["Name"],
                load_state=u["LoadState"],
                active_state=u["ActiveState"],
                sub_state=u["SubState"],
                description=u["Description"],
            )
            for u in units
        )

    async def open_log_stream(self, name: str) -> ProcessLogStream:
        argv = self.journal_argv(name)
        try:
            proc = await asyncio.create_subprocess_exec(*argv, stdout=PIPE, stderr=PIPE)
        except OSError as e:
            raise LogStreamError("stream logs", f"{argv[0]}: {e.strerror or e}") from e
        logger.debug("journal follower pid=%s for %s", proc.pid, name)
        return ProcessLogStream(proc, argv[0])

    async def fetch_config_text(self, name: str) -> str:
        rc, out, err = await self._run("read config", self.config_argv(name))
        if rc != 0:
            raise DirectoryError("read config", err.strip() or f"systemctl cat exited with {rc}")
        return out

    async def perform_action(self, kind: ActionKind, name: str) -> None:
        if self.settings.backend == "systemctl":
            rc, _out, err = await self._run(kind, self._systemctl(kind, name))
            if rc != 0:
                raise DirectoryError(kind, err.strip() or f"systemctl {kind} exited with {rc}")
            return

        action = systemd_bus.UNIT_ACTIONS.get(kind)
        if action is None:
            raise DirectoryError(kind, f"unsupported action: {kind}")
        try:
            manager = await self._get_manager()
            await action(manager, name)
        except DBusError as e:
            raise DirectoryError(kind, f"{kind} {name}: {e.text}") from e
        except BUS_ERRORS as e:
            self._drop_bus()
            raise DirectoryError(kind, f"{kind} {name}: {str(e) or type(e).__name__}") from e

    async def fetch_host_stats(self) -> HostStats:
        try:
            return await asyncio.to_thread(read_host_stats)
        except (OSError, psutil.Error) as e:
            raise DirectoryError("host info", str(e)) from e

    async def _run(self, operation: str, argv: list[str]) -> tuple[int, str, str]:
        try:
            return await run_command(argv)
        except OSError as e:
            raise DirectoryError(operation, f"{argv[0]}: {e.strerror or e}") from e
