import logging
import subprocess
from typing import NamedTuple

from awgctl_core.config import COMMAND_MAX_BUFFER, COMMAND_TIMEOUT

from .errors import CommandError, DaemonUnavailable, RuntimeUnavailable

_log = logging.getLogger("awgctl.channel")

_DAEMON_DOWN = (
    "cannot connect to the docker daemon",
    "is the docker daemon running",
    "error during connect",
)
_CONTAINER_DOWN = (
    "no such container",
    "is not running",
    "is paused",
    "is restarting",
)


def _size(text):
    return len((text or "").encode("utf-8", "surrogateescape"))


class CommandResult(NamedTuple):
    stdout: str
    stderr: str


def _classify(cmd, stderr):
    text = (stderr or "").lower()
    if any(marker in text for marker in _DAEMON_DOWN):
        return DaemonUnavailable("Docker daemon is not available")
    if any(marker in text for marker in _CONTAINER_DOWN):
        return RuntimeUnavailable("Container is not available")
    return CommandError(cmd, (stderr or "").strip()[:500])


class CommandChannel:
    """Runs shell commands inside one container through ``docker exec``.

    With ``container=None`` commands run through the local ``sh``; that is
    how the channel is used when the daemon lives on the same host.
    """

    def __init__(self, container=None, timeout=COMMAND_TIMEOUT, max_buffer_bytes=COMMAND_MAX_BUFFER):
        self.container = container
        self.timeout = timeout
        self.max_buffer_bytes = max_buffer_bytes

    def _argv(self, cmd, interactive):
        if not self.container:
            return ["sh", "-lc", cmd]
        argv = ["docker", "exec"]
        if interactive:
            argv.append("-i")
        return argv + [self.container, "sh", "-lc", cmd]

    def run(self, cmd, timeout=None, max_buffer_bytes=None, input=None):
        timeout = timeout or self.timeout
        limit = max_buffer_bytes or self.max_buffer_bytes
        try:
            r = subprocess.run(
                self._argv(cmd, input is not None),
                input=input, capture_output=True, text=True, timeout=timeout,
            )
        except FileNotFoundError:
            raise DaemonUnavailable("docker binary not found")
        except subprocess.TimeoutExpired:
            _log.error("command timed out after %ss: %s", timeout, cmd)
            raise CommandError(cmd, f"timed out after {timeout}s")
        # checked on the captured output, in UTF-8 bytes
        if _size(r.stdout) > limit or _size(r.stderr) > limit:
            _log.error("command output exceeded %s bytes: %s", limit, cmd)
            raise CommandError(cmd, f"output exceeded {limit} bytes")
        if r.returncode != 0:
            err = _classify(cmd, r.stderr)
            if isinstance(err, CommandError):
                _log.error("%s", err.message)
            raise err
        return CommandResult(r.stdout, r.stderr)

    def container_running(self):
        if not self.container:
            return True
        try:
            r = subprocess.run(
                ["docker", "inspect", "-f", "{{.State.Running}}", self.container],
                capture_output=True, text=True, timeout=self.timeout,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired):
            return False
        return r.returncode == 0 and r.stdout.strip() == "true"
