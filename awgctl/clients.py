import logging
import threading
from datetime import datetime, timezone

from awgctl_core import config

from .awg_manager import UNSET, AwgManager
from .backup import validate_bundle
from .channel import CommandChannel
from .errors import AwgError, NotFound, ServiceUnavailable, ValidationError
from .server_load import collect

_log = logging.getLogger("awgctl.clients")


def build_managers(protocols=None):
    managers = {}
    for protocol in protocols or config.PROTOCOLS:
        channel = CommandChannel(config.PROTOCOLS[protocol]["container"])
        managers[protocol] = AwgManager(
            protocol,
            channel,
            max_peers=config.server_max_peers(),
            public_host=config.server_public_host(),
            server_name=config.server_name(),
        )
    return managers


class Clients:
    """Entry point over every protocol backend.

    ``managers`` maps protocol name to its ``AwgManager``. ``enabled`` pins
    the enabled protocols; when empty they are detected from the running
    containers on every call. ``host`` runs host-side commands such as
    ``docker stats``.
    """

    def __init__(self, managers, enabled=None, server_id="", host=None):
        self.managers = managers
        self.host = host or CommandChannel()
        self.enabled = [p for p in (enabled or []) if p in managers]
        self.server_id = server_id
        self._ttl_thread = None
        self._ttl_stop = threading.Event()

    def enabled_protocols(self):
        if self.enabled:
            return list(self.enabled)
        found = [p for p, m in self.managers.items() if m.is_available()]
        if not found:
            raise ServiceUnavailable("No protocol backend is available")
        return found

    def _manager(self, protocol):
        if protocol not in self.enabled_protocols():
            raise ValidationError(f"Protocol {protocol} is not enabled")
        return self.managers[protocol]

    def list_clients(self):
        users = {}
        for protocol in self.enabled_protocols():
            for client in self.managers[protocol].list_clients():
                peers = [dict(p, protocol=p.get("protocol") or protocol) for p in client["peers"]]
                existing = users.get(client["username"])
                if existing:
                    existing["peers"].extend(peers)
                else:
                    users[client["username"]] = {"username": client["username"], "peers": peers}
        return list(users.values())

    def create_client(self, client_name, protocol, expires_at=None):
        return self._manager(protocol).create_client(client_name, expires_at=expires_at)

    def update_client(self, client_id, protocol, expires_at=UNSET, status=None):
        self._manager(protocol).update_client(client_id, expires_at=expires_at, status=status)

    def delete_client(self, client_id, protocol):
        if not self._manager(protocol).delete_client(client_id):
            raise NotFound(f"Client {client_id} not found")

    def cleanup_expired_clients(self, now=None):
        total = 0
        for protocol in self.enabled_protocols():
            try:
                total += self.managers[protocol].cleanup_expired_clients(now)
            except AwgError as e:
                _log.warning("%s unavailable, skipping expired client cleanup: %s", protocol, e.message)
            except Exception:
                _log.exception("%s: expired client cleanup failed", protocol)
        return total

    def server_status(self):
        protocols = self.enabled_protocols()
        total = sum(self.managers[p].peer_count() for p in protocols)
        return {
            "id": self.server_id,
            "region": config.server_region(),
            "weight": config.server_weight(),
            "maxPeers": config.server_max_peers(),
            "totalPeers": total,
            "protocols": protocols,
        }

    def server_load(self):
        running = [m.container for m in self.managers.values() if m.is_available()]
        return collect(self.host, running)

    def export_backup(self):
        protocols = self.enabled_protocols()
        payload = {
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "serverId": self.server_id or None,
            "protocols": protocols,
        }
        for protocol in protocols:
            payload[config.PROTOCOLS[protocol]["backup_key"]] = self.managers[protocol].export_backup()
        return payload

    def import_backup(self, payload):
        if not isinstance(payload, dict):
            raise ValidationError("Backup payload must be an object")
        protocols = payload.get("protocols") or []
        if not isinstance(protocols, list) or not protocols:
            raise ValidationError("Backup lists no protocols")
        for protocol in protocols:
            if protocol not in self.managers:
                raise ValidationError(f"Unsupported protocol in backup: {protocol}")
            key = config.PROTOCOLS[protocol]["backup_key"]
            if key not in payload:
                raise ValidationError(f"Backup is missing {key}")
            validate_bundle(payload[key], key)
        for protocol in protocols:
            self.managers[protocol].import_backup(payload[config.PROTOCOLS[protocol]["backup_key"]])

    def _ttl_watcher(self, interval):
        while not self._ttl_stop.is_set():
            try:
                count = self.cleanup_expired_clients()
                if count:
                    _log.info("expired clients disabled: %d", count)
            except AwgError as e:
                _log.warning("expired client cleanup skipped: %s", e.message)
            except Exception:
                _log.exception("expired client cleanup failed")
            self._ttl_stop.wait(interval)

    def start_ttl_watcher(self, interval=None):
        if self._ttl_thread and self._ttl_thread.is_alive():
            return
        self._ttl_stop.clear()
        self._ttl_thread = threading.Thread(
            target=self._ttl_watcher, args=(interval or config.cleanup_interval(),), daemon=True,
        )
        self._ttl_thread.start()

    def stop_ttl_watcher(self):
        self._ttl_stop.set()
        if self._ttl_thread:
            self._ttl_thread.join(timeout=5)
            self._ttl_thread = None
