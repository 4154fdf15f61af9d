"""Error taxonomy.

Learn: Every error a client can see is a RelayError with a stable `code`.
The session handler turns them into error responses; none of them ends
the session or the process. ConfigError is the exception: it is raised
before the server starts and the process exits non-zero.
"""

from typing import Any, Optional


class RelayError(Exception):
    """Base for errors reported back to the client."""

    code: Optional[str] = None

    def __init__(self, message: str, operation_id: Any = None):
        super().__init__(message)
        self.message = message
        self.operation_id = operation_id

    @property
    def error_code(self) -> Optional[str]:
        return self.code


class ParseError(RelayError):
    """Inbound message is not a JSON object."""

    code = "ParseError"


class InvalidParams(RelayError):
    """Request `data` has the wrong shape for its operation."""

    code = "InvalidParams"


class MissingFilter(RelayError):
    """update/delete without a `where` condition."""

    code = "MissingFilter"


class UnsupportedOperation(RelayError):
    """Operation name outside insert/update/delete/select."""

    code = "UnsupportedOperation"


class BackendError(RelayError):
    """The database rejected or failed the operation.

    `backend_code` carries the driver's code (SQLSTATE for PostgreSQL)
    when one is available.
    """

    code = "BackendError"

    def __init__(
        self,
        message: str,
        backend_code: Optional[str] = None,
        operation_id: Any = None,
    ):
        super().__init__(message, operation_id)
        self.backend_code = backend_code

    @property
    def error_code(self) -> Optional[str]:
        return self.backend_code


class TransportError(RelayError):
    """Send/receive failure on a session."""

    code = "TransportError"


class ConfigError(Exception):
    """Required configuration is missing or invalid."""
