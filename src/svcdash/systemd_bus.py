from typing import Any

from dbus_next import BusType
from dbus_next.aio import MessageBus


SYSTEMD_DEST = "org.freedesktop.systemd1"
SYSTEMD_PATH = "/org/freedesktop/systemd1"
IFACE_MANAGER = "org.freedesktop.systemd1.Manager"


async def connect_bus(user: bool = False) -> MessageBus:
    bus_type = BusType.SESSION if user else BusType.SYSTEM
    return await MessageBus(bus_type=bus_type).connect()


async def get_manager(bus: MessageBus):
    intro = await bus.introspect(SYSTEMD_DEST, SYSTEMD_PATH)
    obj = bus.get_proxy_object(SYSTEMD_DEST, SYSTEMD_PATH, intro)
    return obj.get_interface(IFACE_MANAGER)


def unit_row_to_dict(row) -> dict[str, Any]:
    # ListUnits row: name, description, load_state, active_state, sub_state,
    # following, unit_path, job_id, job_type, job_path
    return {
        "Name": row[0],
        "Description": row[1],
        "LoadState": row[2],
        "ActiveState": row[3],
        "SubState": row[4],
        "Following": row[5],
        "Path": row[6],
    }


async def list_units(manager) -> list[dict[str, Any]]:
    rows = await manager.call_list_units()
    return [unit_row_to_dict(row) for row in rows]


async def start_unit(manager, unit_name: str, mode: str = "replace"):
    return await manager.call_start_unit(unit_name, mode)


async def stop_unit(manager, unit_name: str, mode: str = "replace"):
    return await manager.call_stop_unit(unit_name, mode)


async def restart_unit(manager, unit_name: str, mode: str = "replace"):
    return await manager.call_restart_unit(unit_name, mode)


async def enable_unit(manager, unit_name: str):
    """EnableUnitFiles(as files, b runtime, b force) followed by a daemon reload."""
    result = await manager.call_enable_unit_files([unit_name], False, True)
    await manager.call_reload()
    return result


async def disable_unit(manager, unit_name: str):
    result = await manager.call_disable_unit_files([unit_name], False)
    await manager.call_reload()
    return result


UNIT_ACTIONS = {
    "start": start_unit,
    "stop": stop_unit,
    "restart": restart_unit,
    "enable": enable_unit,
    "disable": disable_unit,
}
