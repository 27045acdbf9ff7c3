"""
Host load snapshot: uptime, load average, CPU, memory, disk, network
totals and per-container ``docker stats``.

Every section is read on a best-effort basis; one that cannot be read is
reported as ``None`` and the rest of the snapshot is still returned.
"""
import logging
import re
import shlex
import time
from datetime import datetime, timezone

import psutil

from .errors import AwgError

_log = logging.getLogger("awgctl.server_load")

STATS_TIMEOUT = 1.5
STATS_MAX_BUFFER = 1024 * 1024
_STATS_FORMAT = "{{.Name}}\\t{{.CPUPerc}}\\t{{.MemUsage}}\\t{{.NetIO}}\\t{{.PIDs}}"

_BYTES_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([a-zA-Z]+)?$")
_UNITS = {
    "b": 1,
    "bytes": 1,
    "k": 1000,
    "kb": 1000,
    "kib": 1024,
    "mb": 1000 ** 2,
    "mib": 1024 ** 2,
    "gb": 1000 ** 3,
    "gib": 1024 ** 3,
    "tb": 1000 ** 4,
    "tib": 1024 ** 4,
}


def parse_bytes(value):
    """``"12.5MiB"`` -> 13107200; ``None`` for anything unrecognised."""
    m = _BYTES_RE.match((value or "").strip())
    if not m:
        return None
    mult = _UNITS.get((m.group(2) or "B").lower())
    if mult is None:
        return None
    return round(float(m.group(1)) * mult)


def _number(value):
    try:
        return float((value or "").strip().rstrip("%"))
    except ValueError:
        return None


def _pair(value):
    left, _, right = (value or "").partition("/")
    return parse_bytes(left), parse_bytes(right)


def parse_stats(name, stdout):
    line = next((ln.strip() for ln in (stdout or "").splitlines() if ln.strip()), None)
    if not line:
        return None
    parts = line.split("\t")
    if len(parts) < 5:
        return None
    mem_usage, mem_limit = _pair(parts[2])
    net_rx, net_tx = _pair(parts[3])
    pids = _number(parts[4])
    return {
        "name": name,
        "cpuPercent": _number(parts[1]),
        "memUsageBytes": mem_usage,
        "memLimitBytes": mem_limit,
        "netRxBytes": net_rx,
        "netTxBytes": net_tx,
        "pids": int(pids) if pids is not None else None,
    }


def _best_effort(section, read):
    try:
        return read()
    except (psutil.Error, OSError, ValueError) as e:
        _log.warning("server load: %s unavailable: %s", section, e)
        return None


def _cpu():
    return {"cores": max(1, psutil.cpu_count() or 1)}


def _memory():
    vm = psutil.virtual_memory()
    return {
        "totalBytes": vm.total,
        "freeBytes": vm.available,
        "usedBytes": max(0, vm.total - vm.available),
    }


def _disk():
    du = psutil.disk_usage("/")
    return {
        "totalBytes": du.total,
        "usedBytes": du.used,
        "availableBytes": du.free,
        "usedPercent": du.percent,
    }


def _network():
    rx = tx = 0
    for nic, io in psutil.net_io_counters(pernic=True).items():
        if nic == "lo":
            continue
        rx += io.bytes_recv
        tx += io.bytes_sent
    return {"rxBytes": rx, "txBytes": tx}


def _docker(channel, containers):
    stats = []
    for name in containers:
        cmd = f'docker stats --no-stream --format "{_STATS_FORMAT}" {shlex.quote(name)}'
        try:
            out = channel.run(cmd, timeout=STATS_TIMEOUT, max_buffer_bytes=STATS_MAX_BUFFER).stdout
        except AwgError as e:
            _log.warning("server load: stats for %s unavailable: %s", name, e.message)
            continue
        parsed = parse_stats(name, out)
        if parsed:
            stats.append(parsed)
    return {"containers": stats} if stats else None


def collect(channel, containers):
    """Snapshot of host load; ``containers`` are the running ones to sample."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptimeSec": _best_effort("uptime", lambda: max(0, int(time.time() - psutil.boot_time()))),
        "loadavg": _best_effort("loadavg", lambda: list(psutil.getloadavg())),
        "cpu": _best_effort("cpu", _cpu),
        "memory": _best_effort("memory", _memory),
        "disk": _best_effort("disk", _disk),
        "network": _best_effort("network", _network),
        "docker": _docker(channel, containers) if containers else None,
    }
