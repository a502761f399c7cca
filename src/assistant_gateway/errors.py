from __future__ import annotations


class GatewayError(Exception):
    """Base error for everything the gateway raises on purpose."""

    code = "ERR_INTERNAL"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SessionNotFoundError(GatewayError):
    code = "ERR_SESSION_NOT_FOUND"
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class InvalidArgumentError(GatewayError):
    code = "ERR_INVALID_ARGUMENT"
    status_code = 400


class ClientFaultError(GatewayError):
    """The assistant reported an error event for an in-flight send."""

    code = "ERR_CLIENT_FAULT"
    status_code = 500


class DirectoryNotFoundError(GatewayError):
    code = "ERR_DIRECTORY_NOT_FOUND"
    status_code = 400

    def __init__(self, path: str):
        super().__init__(f"Directory not found: {path}")
        self.path = path


class TransportFaultError(GatewayError):
    """Network or IO failure while talking to an external channel."""

    code = "ERR_TRANSPORT"
    status_code = 502
