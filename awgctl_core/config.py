import os

DEFAULTS = {
    "protocols_enabled": "",
    "server_name": "",
    "server_public_host": "",
    "server_max_peers": 0,
    "cleanup_interval": 3600,
}

PROTOCOL_AMNEZIAWG = "amneziawg"
PROTOCOL_AMNEZIAWG2 = "amneziawg2"

_AWG_DIR = "/opt/amnezia/awg"
_AWG_PARAMS = ("Jc", "Jmin", "Jmax", "S1", "S2", "H1", "H2", "H3", "H4")

PROTOCOLS = {
    PROTOCOL_AMNEZIAWG: {
        "display_name": "AmneziaWG",
        "container": "amnezia-awg",
        "interface": "wg0",
        "tool": "wg",
        "quick_tool": "wg-quick",
        "backup_key": "amnezia",
        "params": _AWG_PARAMS,
        "paths": {
            "clients_table": f"{_AWG_DIR}/clientsTable",
            "wg_conf": f"{_AWG_DIR}/wg0.conf",
            "server_public_key": f"{_AWG_DIR}/wireguard_server_public_key.key",
            "psk": f"{_AWG_DIR}/wireguard_psk.key",
        },
    },
    PROTOCOL_AMNEZIAWG2: {
        "display_name": "AmneziaWG 2.0",
        "container": "amnezia-awg2",
        "interface": "awg0",
        "tool": "awg",
        "quick_tool": "awg-quick",
        "backup_key": "amneziaWg2",
        "params": _AWG_PARAMS + ("S3", "S4", "I1", "I2", "I3", "I4", "I5"),
        "paths": {
            "clients_table": f"{_AWG_DIR}/clientsTable",
            "wg_conf": f"{_AWG_DIR}/awg0.conf",
            "server_public_key": f"{_AWG_DIR}/wireguard_server_public_key.key",
            "psk": f"{_AWG_DIR}/wireguard_psk.key",
        },
    },
}

CLIENT_MTU = "1376"
CLIENT_KEEPALIVE = "25"
CLIENT_TRANSPORT = "udp"
CLIENT_ALLOWED_IPS = ["0.0.0.0/0", "::/0"]
PRIMARY_DNS = "1.1.1.1"
SECONDARY_DNS = "1.0.0.1"

DEFAULT_ADDRESS_PREFIX = "10.8.1"
DISABLED_ALLOWED_IPS = "0.0.0.0/32"

# wg dump handshakes above this are nanoseconds, below it seconds
HANDSHAKE_NS_THRESHOLD = 10 ** 12
ONLINE_WINDOW = 180

COMMAND_TIMEOUT = 5
COMMAND_MAX_BUFFER = 10 * 1024 * 1024

SHARE_LINK_SCHEME = "vpn://"
SHARE_LINK_LEVEL = 8

INGRESS_PORT = 8099


def protocols_enabled():
    raw = os.environ.get("PROTOCOLS_ENABLED", DEFAULTS["protocols_enabled"])
    return [p.strip() for p in raw.split(",") if p.strip() in PROTOCOLS]


def server_id():
    return os.environ.get("SERVER_ID", "")


def server_name():
    return os.environ.get("SERVER_NAME", DEFAULTS["server_name"])


def server_region():
    return os.environ.get("SERVER_REGION", "")


def server_weight():
    return _int_env("SERVER_WEIGHT", 0)


def server_max_peers():
    return _int_env("SERVER_MAX_PEERS", DEFAULTS["server_max_peers"])


def server_public_host():
    return os.environ.get("SERVER_PUBLIC_HOST", DEFAULTS["server_public_host"])


def cleanup_interval():
    return _int_env("CLEANUP_INTERVAL", DEFAULTS["cleanup_interval"])


def ingress_port():
    return _int_env("INGRESS_PORT", INGRESS_PORT)


def _int_env(name, default):
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default
