from .errors import ValidationError

REQUIRED_FIELDS = {
    "wgConfig": str,
    "presharedKey": str,
    "serverPublicKey": str,
    "clients": list,
}
_CLIENT_KEYS = {"clientId", "publicKey", "userData"}
_USER_DATA_TYPES = {
    "clientName": str,
    "creationDate": str,
    "expiresAt": (int, float),
    "allowedIp": str,
}


def validate_bundle(bundle, name="bundle"):
    if not isinstance(bundle, dict):
        raise ValidationError(f"{name} must be an object")
    for key, kind in REQUIRED_FIELDS.items():
        if not isinstance(bundle.get(key), kind):
            raise ValidationError(f"{name}.{key} is missing or malformed")
    for i, client in enumerate(bundle["clients"]):
        if not isinstance(client, dict) or set(client) - _CLIENT_KEYS:
            raise ValidationError(f"{name}.clients[{i}] is malformed")
        for key in ("clientId", "publicKey"):
            if key in client and not isinstance(client[key], str):
                raise ValidationError(f"{name}.clients[{i}].{key} must be a string")
        user_data = client.get("userData")
        if user_data is None:
            continue
        if not isinstance(user_data, dict):
            raise ValidationError(f"{name}.clients[{i}].userData must be an object")
        for key, value in user_data.items():
            kind = _USER_DATA_TYPES.get(key)
            if kind is None or isinstance(value, bool) or not isinstance(value, kind):
                raise ValidationError(f"{name}.clients[{i}].userData.{key} is malformed")


def export_backup(store, table):
    return {
        "wgConfig": store.read_config(),
        "clients": table.read(),
        "serverPublicKey": store.read_server_public_key(),
        "presharedKey": store.read_psk(),
    }


def import_backup(store, table, bundle):
    store.write_config(bundle["wgConfig"])
    table.write(bundle["clients"])
    store.write_file(store.paths["psk"], bundle["presharedKey"].strip() + "\n")
    store.write_file(store.paths["server_public_key"], bundle["serverPublicKey"].strip() + "\n")
    store.sync()
