import base64
import io
import json
import re
import struct
import zlib

import qrcode

from awgctl_core.config import (
    CLIENT_ALLOWED_IPS,
    CLIENT_KEEPALIVE,
    CLIENT_MTU,
    CLIENT_TRANSPORT,
    SHARE_LINK_LEVEL,
    SHARE_LINK_SCHEME,
)

_PLACEHOLDER_RE = re.compile(r"\{protocol\}|\{username\}", re.IGNORECASE)


def render_client_config(address, private_key, server_public_key, preshared_key, params,
                         dns=("1.1.1.1", "1.0.0.1"), endpoint=None, keepalive=CLIENT_KEEPALIVE):
    lines = [
        "[Interface]",
        f"Address = {address}/32",
        f"DNS = {', '.join(dns)}",
        f"PrivateKey = {private_key}",
    ]
    lines += [f"{key} = {value}" for key, value in params.items() if value]
    lines += [
        "",
        "[Peer]",
        f"PublicKey = {server_public_key}",
        f"PresharedKey = {preshared_key}",
        f"AllowedIPs = {', '.join(CLIENT_ALLOWED_IPS)}",
    ]
    if endpoint:
        lines.append(f"Endpoint = {endpoint}")
    lines.append(f"PersistentKeepalive = {keepalive}")
    return "\n".join(lines) + "\n"


def describe(server_name, protocol_name, username):
    if server_name and _PLACEHOLDER_RE.search(server_name):
        out = re.sub(r"\{protocol\}", lambda _: protocol_name, server_name, flags=re.IGNORECASE)
        return re.sub(r"\{username\}", lambda _: username, out, flags=re.IGNORECASE)
    if not server_name:
        return f"{username} | {protocol_name}"
    return server_name


def build_descriptor(*, client_id, private_key, address, config_text, params, server_public_key,
                     preshared_key, host, port, container, description, dns):
    last_config = dict(params)
    last_config.update({
        "allowed_ips": list(CLIENT_ALLOWED_IPS),
        "clientId": client_id,
        "client_ip": address,
        "client_priv_key": private_key,
        "client_pub_key": client_id,
        "config": config_text,
        "hostName": host,
        "mtu": CLIENT_MTU,
        "persistent_keep_alive": CLIENT_KEEPALIVE,
        "psk_key": preshared_key,
        "server_pub_key": server_public_key,
    })
    if str(port or "").isdigit():
        last_config["port"] = int(port)
    awg = dict(params)
    awg.update({
        "last_config": json.dumps(last_config, indent=2, ensure_ascii=False),
        "port": str(port or ""),
        "transport_proto": CLIENT_TRANSPORT,
    })
    return {
        "containers": [{"awg": awg, "container": container}],
        "defaultContainer": container,
        "description": description,
        "dns1": dns[0],
        "dns2": dns[1],
        "hostName": host,
    }


def encode_link(descriptor):
    raw = json.dumps(descriptor, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    blob = struct.pack(">I", len(raw)) + zlib.compress(raw, SHARE_LINK_LEVEL)
    encoded = base64.b64encode(blob).decode("ascii")
    encoded = encoded.replace("+", "-").replace("/", "_").rstrip("=")
    return SHARE_LINK_SCHEME + encoded


def decode_link(link):
    if not link.startswith(SHARE_LINK_SCHEME):
        raise ValueError("not a share link")
    encoded = link[len(SHARE_LINK_SCHEME):].replace("-", "+").replace("_", "/")
    blob = base64.b64decode(encoded + "=" * (-len(encoded) % 4))
    (size,) = struct.unpack(">I", blob[:4])
    raw = zlib.decompress(blob[4:])
    if len(raw) != size:
        raise ValueError(f"length header {size} does not match payload {len(raw)}")
    return raw


def qr_png(text):
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_L, box_size=8, border=2)
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf)
    return buf.getvalue()
