import base64
import logging
import re

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from awgctl_core import config

from .awg_manager import UNSET
from .clients import Clients, build_managers
from .errors import AwgError, ValidationError
from .share_link import qr_png

_log = logging.getLogger("awgctl.gateway")

_CLIENT_NAME_RE = re.compile(r'^[\w\s\-\.\[\]@]{1,64}$')


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


def _expires_at(data):
    value = data.get("expiresAt")
    if value is None or (isinstance(value, int) and not isinstance(value, bool)):
        return value
    raise ValidationError("expiresAt must be an integer epoch timestamp or null")


def create_app(clients):
    app = Flask(__name__)

    @app.errorhandler(AwgError)
    def handle_awg_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return e
        _log.exception("unhandled error in %s %s", request.method, request.path)
        return jsonify(ok=False, error="UNKNOWN", message="Internal error"), 500

    @app.route("/api/health")
    def health():
        return jsonify(status="ok")

    @app.route("/api/server")
    def server_status():
        return jsonify(clients.server_status())

    @app.route("/api/server/load")
    def server_load():
        return jsonify(clients.server_load())

    @app.route("/api/clients", methods=["GET"])
    def clients_list():
        return jsonify(clients=clients.list_clients())

    @app.route("/api/clients", methods=["POST"])
    def clients_create():
        data = _json_body()
        name = (data.get("clientName") or "").strip()
        if not _CLIENT_NAME_RE.match(name):
            raise ValidationError("clientName required (max 64 chars)")
        protocol = data.get("protocol") or ""
        result = clients.create_client(name, protocol, expires_at=_expires_at(data))
        png = qr_png(result["config"])
        result["qr"] = "data:image/png;base64," + base64.b64encode(png).decode("ascii")
        return jsonify(result), 201

    @app.route("/api/clients/cleanup", methods=["POST"])
    def clients_cleanup():
        return jsonify(ok=True, count=clients.cleanup_expired_clients())

    @app.route("/api/clients/<protocol>/<path:client_id>", methods=["PATCH"])
    def clients_update(protocol, client_id):
        data = _json_body()
        expires_at = _expires_at(data) if "expiresAt" in data else UNSET
        clients.update_client(client_id, protocol, expires_at=expires_at, status=data.get("status"))
        return jsonify(ok=True)

    @app.route("/api/clients/<protocol>/<path:client_id>", methods=["DELETE"])
    def clients_delete(protocol, client_id):
        clients.delete_client(client_id, protocol)
        return jsonify(ok=True)

    @app.route("/api/server/backup", methods=["GET"])
    def backup_export():
        return jsonify(clients.export_backup())

    @app.route("/api/server/backup", methods=["POST"])
    def backup_import():
        clients.import_backup(_json_body())
        return jsonify(ok=True)

    return app


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s", force=True)
    logging.getLogger("awgctl").setLevel(logging.INFO)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    clients = Clients(
        build_managers(),
        enabled=config.protocols_enabled(),
        server_id=config.server_id(),
    )
    clients.start_ttl_watcher()
    app = create_app(clients)
    app.run(host="0.0.0.0", port=config.ingress_port())


if __name__ == "__main__":
    main()
