import ipaddress
import logging
import threading
import time
from datetime import datetime

from awgctl_core.config import DISABLED_ALLOWED_IPS, PRIMARY_DNS, PROTOCOLS, SECONDARY_DNS

from . import backup, peer_config, share_link
from .clients_table import (
    STATUS_ACTIVE,
    STATUS_DISABLED,
    ClientTable,
    entry_id,
    find_entry,
    merge_clients,
)
from .errors import Conflict, NotFound, ValidationError
from .store import ConfigStore

UNSET = object()

_log = logging.getLogger("awgctl.awg")


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_address(value):
    return isinstance(value, str) and bool(value)


def _is_expired(entry, now):
    expires_at = (entry.get("userData") or {}).get("expiresAt")
    return _is_number(expires_at) and expires_at <= now


def _backfill_allowed_ip(user_data, current):
    if user_data.get("allowedIp") or not current or current == DISABLED_ALLOWED_IPS:
        return False
    first = current.split(",")[0].strip()
    user_data["allowedIp"] = first.split("/")[0]
    return True


def _cached_octets(entries):
    octets = set()
    for entry in entries:
        cached = (entry.get("userData") or {}).get("allowedIp")
        if not _is_address(cached):
            continue
        try:
            addr = ipaddress.ip_address(cached.split("/")[0])
        except ValueError:
            continue
        if addr.version == 4:
            octets.add(int(addr) & 0xFF)
    return octets


def _creation_date():
    return datetime.now().astimezone().strftime("%a %b %d %Y %H:%M:%S GMT%z")


class AwgManager:
    """Peer lifecycle of one AmneziaWG-family backend.

    Every public operation is a read-modify-write over the config document
    and the client table, so each one holds ``self._lock`` for its whole
    span. Two managers never share a lock; they never share files either.
    """

    def __init__(self, protocol, channel, max_peers=0, public_host="", server_name="", clock=time.time):
        proto = PROTOCOLS[protocol]
        self.protocol = protocol
        self.display_name = proto["display_name"]
        self.container = proto["container"]
        self.params = proto["params"]
        self.channel = channel
        self.store = ConfigStore(channel, protocol)
        self.table = ClientTable(channel, proto["paths"]["clients_table"])
        self.max_peers = max_peers
        self.public_host = public_host
        self.server_name = server_name
        self._clock = clock
        self._lock = threading.Lock()

    def _now(self):
        return int(self._clock())

    def is_available(self):
        return self.channel.container_running()

    def _list_clients(self):
        dump = self.store.dump()
        if not dump:
            return []
        return merge_clients(dump, self.table.read(), self._now(), self.protocol)

    def list_clients(self):
        with self._lock:
            return self._list_clients()

    def peer_count(self):
        with self._lock:
            return sum(len(c["peers"]) for c in self._list_clients())

    def create_client(self, client_name, expires_at=None):
        with self._lock:
            if self.max_peers:
                total = sum(len(c["peers"]) for c in self._list_clients())
                if total >= self.max_peers:
                    raise Conflict(f"Maximum peers ({self.max_peers}) reached")

            private_key, client_id = self.store.generate_keypair()
            config = self.store.read_config()
            table = self.table.read()
            address = peer_config.allocate_free_address(config, _cached_octets(table))
            psk = self.store.read_psk()

            config = peer_config.append_peer(config, client_id, psk, address)
            self.store.write_config(config)
            self.store.sync()

            user_data = {
                "clientName": client_name,
                "creationDate": _creation_date(),
                "allowedIp": address,
            }
            if expires_at:
                user_data["expiresAt"] = expires_at
            table.append({"clientId": client_id, "userData": user_data})
            self.table.write(table)
            _log.info("%s: created %s (%s) at %s", self.protocol, client_name, client_id, address)

            link = self._share_link(client_name, client_id, private_key, address, config, psk)
            return {"id": client_id, "config": link, "protocol": self.protocol}

    def _share_link(self, client_name, client_id, private_key, address, config, psk):
        server_public_key = self.store.read_server_public_key()
        listen_port = peer_config.interface_value(config, "ListenPort")
        if not listen_port.isdigit():
            if listen_port:
                _log.warning("%s: ignoring non-numeric ListenPort %r", self.protocol, listen_port)
            listen_port = ""
        params = {key: peer_config.interface_value(config, key) for key in self.params}
        endpoint = f"{self.public_host}:{listen_port}" if self.public_host and listen_port else None
        dns = (PRIMARY_DNS, SECONDARY_DNS)
        text = share_link.render_client_config(
            address, private_key, server_public_key, psk, params, dns=dns, endpoint=endpoint,
        )
        descriptor = share_link.build_descriptor(
            client_id=client_id,
            private_key=private_key,
            address=address,
            config_text=text,
            params=params,
            server_public_key=server_public_key,
            preshared_key=psk,
            host=self.public_host,
            port=listen_port,
            container=self.container,
            description=share_link.describe(self.server_name, self.display_name, client_name),
            dns=dns,
        )
        return share_link.encode_link(descriptor)

    def update_client(self, client_id, expires_at=UNSET, status=None):
        if status not in (None, STATUS_ACTIVE, STATUS_DISABLED):
            raise ValidationError(f"Unknown status: {status}")
        with self._lock:
            table = self.table.read()
            entry = find_entry(table, client_id)
            if entry is None:
                raise NotFound(f"Client {client_id} not found")

            user_data = entry.get("userData") or {}
            entry["userData"] = user_data
            if expires_at is not UNSET:
                if expires_at is None:
                    user_data.pop("expiresAt", None)
                else:
                    user_data["expiresAt"] = expires_at
            self.table.write(table)

            config = self.store.read_config()
            if not config.strip():
                return True

            current = peer_config.find_allowed_ips(config, client_id)
            if _backfill_allowed_ip(user_data, current):
                self.table.write(table)

            target_status = status
            if target_status is None and expires_at is not UNSET:
                target_status = STATUS_DISABLED if _is_expired(entry, self._now()) else STATUS_ACTIVE

            target = None
            if target_status == STATUS_DISABLED:
                target = DISABLED_ALLOWED_IPS
            elif target_status == STATUS_ACTIVE and _is_address(user_data.get("allowedIp")):
                cached = user_data["allowedIp"]
                target = cached if "/" in cached else f"{cached}/32"

            if target and current != target:
                updated = peer_config.set_allowed_ips(config, client_id, target)
                if updated != config:
                    self.store.write_config(updated)
                    self.store.sync()
                    _log.info("%s: %s allowed-ips %s -> %s", self.protocol, client_id, current, target)
            return True

    def delete_client(self, client_id):
        with self._lock:
            table = self.table.read()
            kept = [e for e in table if entry_id(e) != client_id]
            if len(kept) == len(table):
                return False
            self.table.write(kept)

            config = self.store.read_config()
            if config.strip():
                self.store.write_config(peer_config.remove_peer(config, client_id))
                self.store.sync()
            _log.info("%s: deleted %s", self.protocol, client_id)
            return True

    def cleanup_expired_clients(self, now=None):
        with self._lock:
            now = self._now() if now is None else now
            table = self.table.read()
            expired = [e for e in table if _is_expired(e, now)]
            if not expired:
                return 0

            config = self.store.read_config()
            updated = config
            table_changed = False
            if config.strip():
                for entry in expired:
                    client_id = entry_id(entry)
                    if not client_id:
                        continue
                    current = peer_config.find_allowed_ips(config, client_id)
                    if _backfill_allowed_ip(entry["userData"], current):
                        table_changed = True
                    updated = peer_config.set_allowed_ips(updated, client_id, DISABLED_ALLOWED_IPS)

            if table_changed:
                self.table.write(table)
            if updated != config:
                self.store.write_config(updated)
                self.store.sync()
            _log.info("%s: %d expired client(s)", self.protocol, len(expired))
            return len(expired)

    def export_backup(self):
        with self._lock:
            return backup.export_backup(self.store, self.table)

    def import_backup(self, bundle):
        with self._lock:
            backup.import_backup(self.store, self.table, bundle)
            _log.info("%s: backup imported (%d clients)", self.protocol, len(bundle["clients"]))
