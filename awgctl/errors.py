class AwgError(Exception):
    status_code = 500
    code = "UNKNOWN"

    def __init__(self, message=None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self):
        return {"ok": False, "error": self.code, "message": self.message}


class TransportUnavailable(AwgError):
    status_code = 503
    code = "TRANSPORT_UNAVAILABLE"


class DaemonUnavailable(TransportUnavailable):
    code = "DOCKER_NOT_AVAILABLE"


class RuntimeUnavailable(TransportUnavailable):
    code = "CONTAINER_NOT_AVAILABLE"


class ServiceUnavailable(AwgError):
    status_code = 503
    code = "NO_PROTOCOLS_AVAILABLE"


class ValidationError(AwgError):
    status_code = 400
    code = "BAD_REQUEST"


class NotFound(AwgError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(AwgError):
    status_code = 409
    code = "CONFLICT"


class ResourceExhausted(AwgError):
    code = "NO_FREE_ADDRESS"


class CommandError(AwgError):
    code = "COMMAND_FAILED"

    def __init__(self, command, message):
        super().__init__(f"Command failed: {command}: {message}")
        self.command = command
