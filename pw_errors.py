# pw_errors.py
from __future__ import annotations


class ConnectorError(RuntimeError):
    pass


class DecodeError(ConnectorError):
    pass


class EndpointNotFound(ConnectorError):
    pass


class SameEndpoint(ConnectorError):
    pass


class NoOutputChannel(ConnectorError):
    pass


class NoInputChannel(ConnectorError):
    pass


class InvalidDirection(ConnectorError):
    pass


class ServerOperationFailed(ConnectorError):
    pass


class LockPoisoned(ConnectorError):
    pass


class CommandTimeout(ConnectorError):
    pass


ERRORS_BY_NAME = {
    cls.__name__: cls
    for cls in (
        DecodeError,
        EndpointNotFound,
        SameEndpoint,
        NoOutputChannel,
        NoInputChannel,
        InvalidDirection,
        ServerOperationFailed,
        LockPoisoned,
        CommandTimeout,
    )
}


def error_from_name(name: str, message: str) -> ConnectorError:
    return ERRORS_BY_NAME.get(name, ConnectorError)(message)
