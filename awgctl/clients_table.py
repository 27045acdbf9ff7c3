import json
import logging
import re
import shlex

from awgctl_core.config import DISABLED_ALLOWED_IPS, HANDSHAKE_NS_THRESHOLD, ONLINE_WINDOW

STATUS_ACTIVE = "active"
STATUS_DISABLED = "disabled"

_NAME_RE = re.compile(r"^\s*(.*?)\s*(?:\[(.*)\])?\s*$")

_log = logging.getLogger("awgctl.clients_table")


def normalize_table(data):
    """Array form of a parsed clientsTable; legacy ``publicKey`` folds into ``clientId``.

    A ``userData`` that is not an object is dropped, as is a non-string id.
    """
    if isinstance(data, dict):
        data = [
            {"clientId": key, "userData": value} if isinstance(value, dict) else {"clientId": key}
            for key, value in data.items()
        ]
    if not isinstance(data, list):
        return []
    entries = []
    for raw in data:
        if not isinstance(raw, dict):
            continue
        entry = dict(raw)
        legacy = entry.pop("publicKey", None)
        if not isinstance(entry.get("clientId", ""), str):
            del entry["clientId"]
        if not entry.get("clientId") and isinstance(legacy, str) and legacy:
            entry["clientId"] = legacy
        if "userData" in entry and not isinstance(entry["userData"], dict):
            _log.warning("client %s has malformed userData, ignoring it", entry.get("clientId"))
            del entry["userData"]
        entries.append(entry)
    return entries


class ClientTable:
    def __init__(self, channel, path):
        self.channel = channel
        self.path = path

    def read(self):
        raw = self.channel.run(f"cat {shlex.quote(self.path)} 2>/dev/null || true").stdout
        try:
            data = json.loads(raw or "[]")
        except json.JSONDecodeError:
            _log.warning("unreadable client table at %s, treating as empty", self.path)
            return []
        return normalize_table(data)

    def write(self, entries):
        self.channel.run(f"cat > {shlex.quote(self.path)}", input=json.dumps(entries))


def entry_id(entry):
    return (entry.get("clientId") or "").strip()


def find_entry(entries, client_id):
    for entry in entries:
        if entry_id(entry) == client_id:
            return entry
    return None


def parse_client_name(client_name):
    m = _NAME_RE.match(client_name)
    username = (m.group(1) if m else "") or client_name
    label = (m.group(2) or "").strip() if m else ""
    return username.strip(), label


def build_lookup(entries):
    lookup = {}
    for entry in entries:
        client_id = entry.get("clientId")
        user_data = entry.get("userData") or {}
        client_name = user_data.get("clientName")
        if not client_id or not isinstance(client_name, str) or not client_name:
            continue
        username, label = parse_client_name(client_name)
        expires_at = user_data.get("expiresAt")
        info = lookup.setdefault(client_id, {"name": username, "labels": [], "expiresAt": expires_at})
        if label and label not in info["labels"]:
            info["labels"].append(label)
        if expires_at:
            info["expiresAt"] = expires_at
    return lookup


def parse_dump(dump):
    rows = []
    for line in (dump or "").splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split("\t")
        if len(parts) < 8:
            continue
        if ":" not in parts[2] and "/" not in parts[3]:
            continue
        rows.append(parts)
    return rows


def _to_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def handshake_seconds(raw):
    value = _to_int(raw)
    if value > HANDSHAKE_NS_THRESHOLD:
        return value // 1_000_000_000
    return value


def is_disabled(allowed_ips):
    return allowed_ips == [DISABLED_ALLOWED_IPS]


def merge_clients(dump, entries, now, protocol):
    lookup = build_lookup(entries)
    users = {}
    for parts in parse_dump(dump):
        peer_id = parts[0]
        info = lookup.get(peer_id, {})
        allowed_ips = [p.strip() for p in parts[3].split(",")]
        last_handshake = handshake_seconds(parts[4])
        username = info.get("name") or peer_id
        labels = info.get("labels") or []
        peer = {
            "id": peer_id,
            "name": labels[0] if labels else None,
            "allowedIps": allowed_ips,
            "lastHandshake": last_handshake,
            "traffic": {"received": _to_int(parts[5]), "sent": _to_int(parts[6])},
            "endpoint": parts[2] if parts[2] and parts[2] != "(none)" else None,
            "online": now - last_handshake < ONLINE_WINDOW,
            "expiresAt": info.get("expiresAt") or None,
            "status": STATUS_DISABLED if is_disabled(allowed_ips) else STATUS_ACTIVE,
            "protocol": protocol,
        }
        users.setdefault(username, {"username": username, "peers": []})["peers"].append(peer)
    return list(users.values())
