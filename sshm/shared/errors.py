"""Error codes and exceptions for sshm."""
from enum import Enum, auto
from typing import Optional


class ErrorCode(Enum):
    """Enumeration of all possible error codes in the application."""

    CONFIG_NOT_FOUND = auto()
    CONFIG_PARSE_FAILED = auto()
    VALIDATION_FAILED = auto()
    AUTH_FAILED = auto()
    NETWORK_ERROR = auto()
    HOP_FAILED = auto()
    CLOSE_FAILED = auto()
    REMOTE_DISCONNECT = auto()
    TERMINAL_ERROR = auto()
    ALREADY_RAW = auto()
    SESSION_FAILED = auto()
    UNSUPPORTED_PATH = auto()
    PATH_NOT_FOUND = auto()
    TRANSFER_FAILED = auto()
    TRANSFER_CANCELLED = auto()
    INVALID_COMMAND = auto()
    HOST_NOT_FOUND = auto()
    UNKNOWN_ERROR = auto()


class SSHMError(Exception):
    """Base exception for sshm errors."""

    def __init__(self, code: ErrorCode, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code.name}] {message}")


class ConfigError(SSHMError):
    """Base class for configuration loading failures."""


class NoConfigFoundError(ConfigError):
    """Raised when none of the configuration files exist."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.CONFIG_NOT_FOUND, message)


class ConfigParseError(ConfigError):
    """Raised when a configuration file is not valid YAML."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.CONFIG_PARSE_FAILED, message)


class ConfigValidationError(ConfigError):
    """Raised when a host entry is missing required fields."""

    def __init__(self, index: int, name: str, message: str):
        self.index = index
        self.name = name
        super().__init__(
            ErrorCode.VALIDATION_FAILED,
            f"validate host #{index} ({name}): {message}",
        )


class AuthenticationError(SSHMError):
    """Raised when every authentication method was rejected."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.AUTH_FAILED, message)


class NetworkError(SSHMError):
    """Raised when network issues occur."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(code, message)


class HopFailedError(SSHMError):
    """Raised when one hop of a connection chain could not be established."""

    def __init__(self, index: int, name: str, cause: Exception):
        self.index = index
        self.name = name
        self.cause = cause
        super().__init__(ErrorCode.HOP_FAILED, f"hop {index + 1} ({name}): {cause}")


class ChainCloseError(SSHMError):
    """Raised when one or more transports of a chain failed to close."""

    def __init__(self, errors: list):
        self.errors = errors
        detail = "; ".join(str(e) for e in errors)
        super().__init__(ErrorCode.CLOSE_FAILED, f"{len(errors)} transport(s) failed to close: {detail}")


class TerminalError(SSHMError):
    """Raised when the terminal discipline could not be changed."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.TERMINAL_ERROR, message)


class AlreadyRawError(TerminalError):
    """Raised when raw mode is requested while a session is already bound."""

    def __init__(self):
        SSHMError.__init__(self, ErrorCode.ALREADY_RAW, "already in raw mode")


class SessionError(SSHMError):
    """Raised on I/O or protocol failures of an interactive session."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.SESSION_FAILED, message)


class UnsupportedPathFormError(SSHMError):
    """Raised for path forms the resolver does not handle (e.g. ~user)."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(ErrorCode.UNSUPPORTED_PATH, f"~user not supported: {path}")


class PathNotFoundError(SSHMError):
    """Raised when a path is not found."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.PATH_NOT_FOUND, message)


class TransferError(SSHMError):
    """Raised when a transfer fails; folder transfers carry their result."""

    def __init__(self, message: str, result: Optional[object] = None):
        self.result = result
        super().__init__(ErrorCode.TRANSFER_FAILED, message)


class TransferCancelled(SSHMError):
    """Raised when a transfer observes its cancellation token."""

    def __init__(self, message: str = "transfer cancelled"):
        super().__init__(ErrorCode.TRANSFER_CANCELLED, message)


class CommandError(SSHMError):
    """Raised for malformed or failing file-shell commands."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.INVALID_COMMAND, message)


class HostNotFoundError(SSHMError):
    """Raised when a host named on the command line is not configured."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(ErrorCode.HOST_NOT_FOUND, f"no host named {name!r}")
