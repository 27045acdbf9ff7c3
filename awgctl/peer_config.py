"""
Lossless parser and editor for WireGuard-style peer configuration text.

A document is split into sections at every ``[Interface]`` / ``[Peer]``
header line. Each section keeps its raw lines (line endings included), so
rendering an untouched parse gives back the exact input and edits only
change the lines they target. Peers are matched on exact ``PublicKey``
equality.
"""
import ipaddress
import re

from awgctl_core.config import DEFAULT_ADDRESS_PREFIX

from .errors import ResourceExhausted

_HEADER_RE = re.compile(r"^\s*\[(\w+)\]\s*$")
_KV_RE = re.compile(r"^\s*([A-Za-z0-9_]+)\s*=\s*(.*?)\s*$")
_IPV4_PREFIX_RE = re.compile(r"^(\d+\.\d+\.\d+)\.\d+")


class Section:
    def __init__(self, kind, lines=None):
        self.kind = kind
        self.lines = lines if lines is not None else []

    def _find(self, key):
        key = key.lower()
        for i, line in enumerate(self.lines):
            m = _KV_RE.match(line)
            if m and m.group(1).lower() == key:
                return i, m.group(2)
        return None, None

    def get(self, key):
        return self._find(key)[1]

    def set(self, key, value, after=None):
        idx, _ = self._find(key)
        if idx is not None:
            self.lines[idx] = f"{key} = {value}{_ending(self.lines[idx])}"
            return
        pos, _ = self._find(after) if after else (None, None)
        if pos is None:
            pos = len(self.lines) - 1
        if not self.lines[pos].endswith("\n"):
            self.lines[pos] += "\n"
        self.lines.insert(pos + 1, f"{key} = {value}\n")

    def text(self):
        return "".join(self.lines)


def _ending(line):
    if line.endswith("\r\n"):
        return "\r\n"
    return "\n" if line.endswith("\n") else ""


def parse(doc):
    sections = [Section(None)]
    for line in (doc or "").splitlines(keepends=True):
        m = _HEADER_RE.match(line)
        if m:
            sections.append(Section(m.group(1).lower(), [line]))
        else:
            sections[-1].lines.append(line)
    return sections


def render(sections):
    return "".join(s.text() for s in sections)


def peers(sections):
    return [s for s in sections if s.kind == "peer"]


def interface(sections):
    for s in sections:
        if s.kind == "interface":
            return s
    return None


def _matches(section, client_id):
    return section.kind == "peer" and bool(client_id) and section.get("PublicKey") == client_id


def find_peer(doc, client_id):
    for s in parse(doc):
        if _matches(s, client_id):
            return s
    return None


def find_allowed_ips(doc, client_id):
    section = find_peer(doc, client_id)
    if section is None:
        return None
    return section.get("AllowedIPs") or None


def set_allowed_ips(doc, client_id, value):
    sections = parse(doc)
    changed = False
    for s in sections:
        if _matches(s, client_id):
            s.set("AllowedIPs", value, after="PublicKey")
            changed = True
    return render(sections) if changed else doc


def remove_peer(doc, client_id):
    sections = parse(doc)
    kept = [s for s in sections if not _matches(s, client_id)]
    if len(kept) == len(sections):
        return doc
    return render(kept)


def append_peer(doc, public_key, preshared_key, address):
    lines = ["[Peer]", f"PublicKey = {public_key}"]
    if preshared_key:
        lines.append(f"PresharedKey = {preshared_key}")
    lines.append(f"AllowedIPs = {address}/32")
    base = doc if not doc or doc.endswith("\n") else doc + "\n"
    return base + "\n" + "\n".join(lines) + "\n"


def interface_value(doc, key):
    section = interface(parse(doc))
    if section is None:
        return ""
    return section.get(key) or ""


def peer_count(doc):
    return len(peers(parse(doc)))


def split_allowed_ips(value):
    return [p.strip() for p in (value or "").split(",") if p.strip()]


def _address_prefix(sections):
    section = interface(sections)
    address = section.get("Address") if section else None
    m = _IPV4_PREFIX_RE.match(address or "")
    return m.group(1) if m else DEFAULT_ADDRESS_PREFIX


def used_host_octets(sections):
    used = set()
    for s in peers(sections):
        for cidr in split_allowed_ips(s.get("AllowedIPs")):
            try:
                net = ipaddress.ip_network(cidr, strict=False)
            except ValueError:
                continue
            if net.version == 4 and net.prefixlen == 32:
                used.add(int(net.network_address) & 0xFF)
    return used


def allocate_free_address(doc, reserved=()):
    sections = parse(doc)
    prefix = _address_prefix(sections)
    used = used_host_octets(sections) | set(reserved)
    for host in range(1, 255):
        if host not in used:
            return f"{prefix}.{host}"
    raise ResourceExhausted("No free addresses left in the tunnel subnet")
