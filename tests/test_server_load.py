import time
from types import SimpleNamespace
from unittest.mock import patch

import psutil
import pytest

from awgctl import server_load
from awgctl.channel import CommandResult
from awgctl.errors import RuntimeUnavailable

STATS = {
    "amnezia-awg": "amnezia-awg\t0.05%\t12.5MiB / 1.944GiB\t1.2kB / 3.4MB\t5\n",
    "amnezia-awg2": "amnezia-awg2\t--\tgarbage\t0B / 0B\t3\n",
}


class StatsChannel:
    def __init__(self, stats=STATS, down=()):
        self.stats = stats
        self.down = down
        self.commands = []

    def run(self, cmd, timeout=None, max_buffer_bytes=None, input=None):
        self.commands.append((cmd, timeout, max_buffer_bytes))
        name = cmd.rsplit(" ", 1)[1]
        if name in self.down:
            raise RuntimeUnavailable("Container is not available")
        return CommandResult(self.stats.get(name, ""), "")


@pytest.mark.parametrize("raw, expected", [
    ("512B", 512),
    ("1.2kB", 1200),
    ("12.5MiB", 13107200),
    ("3 GB", 3 * 10 ** 9),
    ("1TiB", 1024 ** 4),
    ("7", 7),
    ("5XB", None),
    ("n/a", None),
    ("", None),
])
def test_parse_bytes(raw, expected):
    assert server_load.parse_bytes(raw) == expected


def test_parse_stats():
    parsed = server_load.parse_stats("amnezia-awg", STATS["amnezia-awg"])
    assert parsed == {
        "name": "amnezia-awg",
        "cpuPercent": 0.05,
        "memUsageBytes": 13107200,
        "memLimitBytes": round(1.944 * 1024 ** 3),
        "netRxBytes": 1200,
        "netTxBytes": 3400000,
        "pids": 5,
    }


def test_parse_stats_tolerates_unreadable_columns():
    parsed = server_load.parse_stats("amnezia-awg2", STATS["amnezia-awg2"])
    assert parsed["cpuPercent"] is None
    assert parsed["memUsageBytes"] is None
    assert parsed["memLimitBytes"] is None
    assert parsed["netRxBytes"] == 0
    assert parsed["pids"] == 3


def test_parse_stats_short_or_empty():
    assert server_load.parse_stats("x", "x\t1%\n") is None
    assert server_load.parse_stats("x", "\n\n") is None


def test_docker_stats_command():
    channel = StatsChannel()
    server_load._docker(channel, ["amnezia-awg"])
    cmd, timeout, cap = channel.commands[0]
    assert cmd == (
        'docker stats --no-stream --format '
        '"{{.Name}}\\t{{.CPUPerc}}\\t{{.MemUsage}}\\t{{.NetIO}}\\t{{.PIDs}}" amnezia-awg'
    )
    assert timeout == 1.5
    assert cap == 1024 * 1024


def test_docker_skips_unreachable_containers():
    result = server_load._docker(StatsChannel(down=("amnezia-awg2",)), ["amnezia-awg", "amnezia-awg2"])
    assert [c["name"] for c in result["containers"]] == ["amnezia-awg"]
    assert server_load._docker(StatsChannel(down=("amnezia-awg",)), ["amnezia-awg"]) is None


def _patch_host(disk=None):
    vm = SimpleNamespace(total=8000, available=3000)
    du = SimpleNamespace(total=100, used=40, free=60, percent=40.0)
    nics = {
        "lo": SimpleNamespace(bytes_recv=1000, bytes_sent=1000),
        "eth0": SimpleNamespace(bytes_recv=10, bytes_sent=20),
        "wg0": SimpleNamespace(bytes_recv=1, bytes_sent=2),
    }
    return [
        patch.object(psutil, "boot_time", return_value=time.time() - 3600),
        patch.object(psutil, "getloadavg", return_value=(0.5, 0.25, 0.1)),
        patch.object(psutil, "cpu_count", return_value=4),
        patch.object(psutil, "virtual_memory", return_value=vm),
        patch.object(psutil, "disk_usage", **({"side_effect": disk} if disk else {"return_value": du})),
        patch.object(psutil, "net_io_counters", return_value=nics),
    ]


def _collect(channel, containers, disk=None):
    patches = _patch_host(disk)
    for p in patches:
        p.start()
    try:
        return server_load.collect(channel, containers)
    finally:
        for p in patches:
            p.stop()


def test_collect():
    load = _collect(StatsChannel(), ["amnezia-awg"])
    assert load["timestamp"]
    assert 3599 <= load["uptimeSec"] <= 3600
    assert load["loadavg"] == [0.5, 0.25, 0.1]
    assert load["cpu"] == {"cores": 4}
    assert load["memory"] == {"totalBytes": 8000, "freeBytes": 3000, "usedBytes": 5000}
    assert load["disk"] == {"totalBytes": 100, "usedBytes": 40, "availableBytes": 60, "usedPercent": 40.0}
    assert load["network"] == {"rxBytes": 11, "txBytes": 22}
    assert [c["name"] for c in load["docker"]["containers"]] == ["amnezia-awg"]


def test_collect_reports_unreadable_sections_as_none():
    channel = StatsChannel()
    load = _collect(channel, [], disk=PermissionError("denied"))
    assert load["disk"] is None
    assert load["docker"] is None
    assert load["memory"]["usedBytes"] == 5000
    assert channel.commands == []
