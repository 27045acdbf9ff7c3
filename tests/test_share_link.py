import base64
import json
import struct
import zlib

import pytest

from awgctl import share_link

PARAMS = {"Jc": "4", "Jmin": "10", "S3": ""}


def _descriptor(description="alice | AmneziaWG"):
    text = share_link.render_client_config("10.8.1.2", "cpriv", "spub", "psk", PARAMS, endpoint="vpn.example.com:51820")
    return share_link.build_descriptor(
        client_id="cpub",
        private_key="cpriv",
        address="10.8.1.2",
        config_text=text,
        params=PARAMS,
        server_public_key="spub",
        preshared_key="psk",
        host="vpn.example.com",
        port="51820",
        container="amnezia-awg",
        description=description,
        dns=("1.1.1.1", "1.0.0.1"),
    )


def test_render_client_config():
    text = share_link.render_client_config(
        "10.8.1.2", "cpriv", "spub", "psk", PARAMS, endpoint="vpn.example.com:51820",
    )
    assert "Address = 10.8.1.2/32\n" in text
    assert "DNS = 1.1.1.1, 1.0.0.1\n" in text
    assert "PrivateKey = cpriv\n" in text
    assert "Jc = 4\nJmin = 10\n" in text
    assert "S3" not in text
    assert "PresharedKey = psk\n" in text
    assert "AllowedIPs = 0.0.0.0/0, ::/0\n" in text
    assert "Endpoint = vpn.example.com:51820\n" in text
    assert text.endswith("PersistentKeepalive = 25\n")


def test_render_client_config_without_endpoint():
    text = share_link.render_client_config("10.8.1.2", "cpriv", "spub", "psk", {})
    assert "Endpoint" not in text


def test_describe():
    assert share_link.describe("", "AmneziaWG", "bob") == "bob | AmneziaWG"
    assert share_link.describe("My VPN", "AmneziaWG", "bob") == "My VPN"
    assert share_link.describe("{Protocol} for {USERNAME}", "AmneziaWG", "bob") == "AmneziaWG for bob"


def test_descriptor_shape():
    d = _descriptor()
    assert d["defaultContainer"] == "amnezia-awg"
    assert d["containers"][0]["container"] == "amnezia-awg"
    awg = d["containers"][0]["awg"]
    assert awg["Jc"] == "4"
    assert awg["port"] == "51820"
    assert awg["transport_proto"] == "udp"
    last = json.loads(awg["last_config"])
    assert last["client_ip"] == "10.8.1.2"
    assert last["client_pub_key"] == "cpub"
    assert last["port"] == 51820
    assert last["allowed_ips"] == ["0.0.0.0/0", "::/0"]
    assert "PrivateKey = cpriv" in last["config"]
    assert d["dns1"] == "1.1.1.1"
    assert d["hostName"] == "vpn.example.com"


def test_link_round_trip_header_matches_payload():
    link = share_link.encode_link(_descriptor("Ünïcode server"))
    assert link.startswith("vpn://")
    body = link[len("vpn://"):]
    assert "+" not in body and "/" not in body and not body.endswith("=")

    raw = share_link.decode_link(link)
    assert json.loads(raw.decode("utf-8"))["description"] == "Ünïcode server"

    padded = body.replace("-", "+").replace("_", "/")
    blob = base64.b64decode(padded + "=" * (-len(padded) % 4))
    (size,) = struct.unpack(">I", blob[:4])
    assert size == len(raw) == len(zlib.decompress(blob[4:]))


def test_decode_rejects_bad_header():
    raw = b'{"a":1}'
    blob = struct.pack(">I", len(raw) + 1) + zlib.compress(raw, 8)
    link = "vpn://" + base64.urlsafe_b64encode(blob).decode().rstrip("=")
    with pytest.raises(ValueError):
        share_link.decode_link(link)


def test_qr_png():
    png = share_link.qr_png("vpn://abc")
    assert png[:8] == b"\x89PNG\r\n\x1a\n"
