import asyncio
import socket
import sys

import psutil
import pytest
from dbus_next.errors import AuthError, DBusError, InvalidAddressError

from svcdash import directory as directory_mod
from svcdash import systemd_bus
from svcdash.config import Settings
from svcdash.directory import (
    DirectoryError,
    LogStreamError,
    ProcessLogStream,
    SystemdDirectory,
    parse_unit_listing,
    read_host_stats,
)


LISTING = """\
nginx.service          loaded active   running A high performance web server
● postgres.service     loaded failed   failed  PostgreSQL RDBMS
cron.timer             loaded inactive dead    Daily cron
garbage
"""


class FakeManager:
    def __init__(self, rows=(), error=None):
        self.rows = list(rows)
        self.error = error
        self.calls = []

    async def call_list_units(self):
        return self.rows

    async def call_restart_unit(self, name, mode):
        self.calls.append(("restart", name, mode))
        if self.error:
            raise self.error

    async def call_enable_unit_files(self, names, runtime, force):
        self.calls.append(("enable", tuple(names), runtime, force))
        return [True, []]

    async def call_reload(self):
        self.calls.append(("reload",))


class FakeBus:
    def __init__(self):
        self.disconnected = False

    def disconnect(self):
        self.disconnected = True


@pytest.fixture
def fake_bus(monkeypatch):
    bus = FakeBus()
    manager = FakeManager(
        rows=[
            ("web.service", "Web app", "loaded", "active", "running", "", "/org/x", 0, "", "/"),
            ("cron.timer", "Daily cron", "loaded", "inactive", "dead", "", "/org/y", 0, "", "/"),
        ]
    )
    seen = {}

    async def connect_bus(user=False):
        seen["user"] = user
        return bus

    async def get_manager(_bus):
        return manager

    monkeypatch.setattr(systemd_bus, "connect_bus", connect_bus)
    monkeypatch.setattr(systemd_bus, "get_manager", get_manager)
    return bus, manager, seen


@pytest.fixture
def commands(monkeypatch):
    """Replace run_command; tests set `replies[argv[1]]` to (rc, out, err)."""
    calls = []
    replies = {}

    async def run_command(argv):
        calls.append(argv)
        reply = replies.get(argv[1] if argv[1] != "--user" else argv[2], (0, "", ""))
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(directory_mod, "run_command", run_command)
    return calls, replies


def test_parse_unit_listing():
    services = parse_unit_listing(LISTING)
    assert [s.name for s in services] == ["nginx.service", "postgres.service", "cron.timer"]
    nginx, postgres, cron = services
    assert nginx.description == "A high performance web server"
    assert postgres.active_state == "failed"
    assert cron.sub_state == "dead"
    assert cron.load_state == "loaded"


def test_parse_unit_listing_empty():
    assert parse_unit_listing("") == ()


def test_command_lines_for_system_scope():
    d = SystemdDirectory(Settings())
    assert d.journal_argv("web.service") == [
        "journalctl", "-f", "-u", "web.service", "--no-pager", "-n", "100",
    ]
    assert d.config_argv("web.service") == ["systemctl", "cat", "web.service", "--no-pager"]
    assert d.list_argv()[:2] == ["systemctl", "list-units"]


def test_command_lines_for_user_scope():
    d = SystemdDirectory(Settings(scope="user", journal_lines=20))
    assert d.journal_argv("web.service")[:2] == ["journalctl", "--user"]
    assert d.journal_argv("web.service")[-2:] == ["-n", "20"]
    assert d.config_argv("web.service")[:2] == ["systemctl", "--user"]


@pytest.mark.asyncio
async def test_dbus_listing(fake_bus):
    _bus, _manager, seen = fake_bus
    d = SystemdDirectory(Settings(scope="user"))
    services = await d.list_services()
    assert seen["user"] is True
    assert [s.name for s in services] == ["web.service", "cron.timer"]
    assert services[0].description == "Web app"
    assert services[1].active_state == "inactive"


@pytest.mark.asyncio
async def test_dbus_connection_is_reused(fake_bus, monkeypatch):
    d = SystemdDirectory(Settings())
    await d.list_services()
    opened = []

    async def connect_again(user=False):
        opened.append(user)
        return FakeBus()

    monkeypatch.setattr(systemd_bus, "connect_bus", connect_again)
    await d.list_services()
    assert opened == []


@pytest.mark.asyncio
async def test_dbus_action(fake_bus):
    _bus, manager, _seen = fake_bus
    d = SystemdDirectory(Settings())
    await d.perform_action("restart", "web.service")
    await d.perform_action("enable", "web.service")
    assert manager.calls == [
        ("restart", "web.service", "replace"),
        ("enable", ("web.service",), False, True),
        ("reload",),
    ]


@pytest.mark.asyncio
async def test_dbus_action_error_is_wrapped(fake_bus):
    _bus, manager, _seen = fake_bus
    manager.error = DBusError("org.freedesktop.DBus.Error.AccessDenied", "Access denied")
    d = SystemdDirectory(Settings())
    with pytest.raises(DirectoryError) as info:
        await d.perform_action("restart", "web.service")
    assert str(info.value) == "restart web.service: Access denied"
    assert info.value.operation == "restart"


@pytest.mark.asyncio
async def test_dbus_connect_failure_drops_bus(monkeypatch):
    async def connect_bus(user=False):
        raise FileNotFoundError(2, "No such file or directory")

    monkeypatch.setattr(systemd_bus, "connect_bus", connect_bus)
    d = SystemdDirectory(Settings())
    with pytest.raises(DirectoryError):
        await d.list_services()
    assert d._manager is None


@pytest.mark.asyncio
async def test_missing_session_bus_is_a_directory_error(monkeypatch):
    async def connect_bus(user=False):
        raise InvalidAddressError("DBUS_SESSION_BUS_ADDRESS not set")

    monkeypatch.setattr(systemd_bus, "connect_bus", connect_bus)
    d = SystemdDirectory(Settings(scope="user"))
    with pytest.raises(DirectoryError, match="DBUS_SESSION_BUS_ADDRESS not set"):
        await d.list_services()
    assert d._manager is None
    with pytest.raises(DirectoryError, match="restart web.service: DBUS_SESSION_BUS_ADDRESS not set"):
        await d.perform_action("restart", "web.service")


@pytest.mark.asyncio
async def test_refused_bus_auth_is_a_directory_error(monkeypatch):
    async def connect_bus(user=False):
        raise AuthError("authentication failed: REJECTED")

    monkeypatch.setattr(systemd_bus, "connect_bus", connect_bus)
    d = SystemdDirectory(Settings())
    with pytest.raises(DirectoryError, match="REJECTED"):
        await d.list_services()


@pytest.mark.asyncio
async def test_close_disconnects_bus(fake_bus):
    bus, _manager, _seen = fake_bus
    d = SystemdDirectory(Settings())
    await d.list_services()
    await d.close()
    assert bus.disconnected


@pytest.mark.asyncio
async def test_systemctl_listing(commands):
    calls, replies = commands
    replies["list-units"] = (0, LISTING, "")
    d = SystemdDirectory(Settings(backend="systemctl"))
    services = await d.list_services()
    assert len(services) == 3
    assert calls == [d.list_argv()]


@pytest.mark.asyncio
async def test_systemctl_action_failure_uses_stderr(commands):
    calls, replies = commands
    replies["stop"] = (1, "", "Failed to stop web.service: Access denied\n")
    d = SystemdDirectory(Settings(backend="systemctl", scope="user"))
    with pytest.raises(DirectoryError, match="Failed to stop web.service: Access denied"):
        await d.perform_action("stop", "web.service")
    assert calls == [["systemctl", "--user", "stop", "web.service"]]


@pytest.mark.asyncio
async def test_missing_binary_is_reported(commands):
    _calls, replies = commands
    replies["cat"] = FileNotFoundError(2, "No such file or directory")
    d = SystemdDirectory(Settings())
    with pytest.raises(DirectoryError, match="systemctl: No such file or directory"):
        await d.fetch_config_text("web.service")


@pytest.mark.asyncio
async def test_config_text(commands):
    _calls, replies = commands
    replies["cat"] = (0, "# /etc/systemd/system/web.service\n[Unit]\n", "")
    d = SystemdDirectory(Settings())
    assert (await d.fetch_config_text("web.service")).startswith("# /etc/systemd")


@pytest.mark.asyncio
async def test_log_stream_open_failure(monkeypatch):
    async def no_exec(*argv, **kwargs):
        raise FileNotFoundError(2, "No such file or directory")

    monkeypatch.setattr(directory_mod.asyncio, "create_subprocess_exec", no_exec)
    d = SystemdDirectory(Settings())
    with pytest.raises(LogStreamError, match="journalctl: No such file or directory"):
        await d.open_log_stream("web.service")


@pytest.mark.asyncio
async def test_process_log_stream_reads_lines():
    proc = await asyncio.create_subprocess_exec(
        sys.executable, "-c", "print('one'); print(''); print('two')",
        stdout=asyncio.subprocess.PIPE,
    )
    stream = ProcessLogStream(proc)
    lines = [line async for line in stream]
    await stream.close()
    assert lines == ["one", "", "two"]


@pytest.mark.asyncio
async def test_process_log_stream_close_kills_follower():
    proc = await asyncio.create_subprocess_exec(
        sys.executable, "-c", "import time; print('up', flush=True); time.sleep(60)",
        stdout=asyncio.subprocess.PIPE,
    )
    stream = ProcessLogStream(proc)
    async for line in stream:
        assert line == "up"
        break
    await asyncio.wait_for(stream.close(), timeout=5)
    assert proc.returncode is not None


@pytest.mark.asyncio
async def test_cancelled_command_kills_the_child(tmp_path):
    pidfile = tmp_path / "pid"
    script = f"import os, time; open({str(pidfile)!r}, 'w').write(str(os.getpid())); time.sleep(60)"

    async def child_started():
        while not pidfile.exists() or not pidfile.read_text():
            await asyncio.sleep(0.02)

    task = asyncio.create_task(directory_mod.run_command([sys.executable, "-c", script]))
    await asyncio.wait_for(child_started(), timeout=10)
    pid = int(pidfile.read_text())
    assert psutil.pid_exists(pid)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(task, timeout=0.1)
    assert not psutil.pid_exists(pid)


@pytest.mark.asyncio
async def test_process_log_stream_reports_failure_from_stderr():
    script = (
        "import sys; print('-- No entries --', flush=True); "
        "sys.stderr.write('Hint: run as root\\nNo journal files were found.\\n'); sys.exit(1)"
    )
    proc = await asyncio.create_subprocess_exec(
        sys.executable, "-c", script,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stream = ProcessLogStream(proc)
    lines = []
    with pytest.raises(LogStreamError, match="^No journal files were found.$"):
        async for line in stream:
            lines.append(line)
    await stream.close()
    assert lines == ["-- No entries --"]


@pytest.mark.asyncio
async def test_process_log_stream_silent_failure_names_exit_status():
    proc = await asyncio.create_subprocess_exec(
        sys.executable, "-c", "raise SystemExit(3)",
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stream = ProcessLogStream(proc, "journalctl")
    with pytest.raises(LogStreamError, match="journalctl exited with 3"):
        async for _line in stream:
            pass
    await stream.close()


def test_host_stats_are_read_locally():
    stats = read_host_stats()
    assert stats.hostname == socket.gethostname()
    assert stats.uptime_seconds >= 0
    assert stats.kernel_version
