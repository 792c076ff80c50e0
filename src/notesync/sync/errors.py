"""Exception hierarchy and error categorisation for the sync engine.

Store adapters raise these (or plain ``OSError``/``ConnectionError``);
the engine turns any of them into a ``SyncError`` with
``categorize_error()`` and records it on the failed operation.
Conflicts are never raised: they are an operation status.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import yaml
from pydantic import ValidationError as PydanticValidationError

if TYPE_CHECKING:
    from .models import SyncError


class SyncFailure(Exception):
    """Base class for categorised sync failures."""

    error_type = "unknown"


class NetworkError(SyncFailure):
    """The remote store could not be reached."""

    error_type = "network"


class FileSystemError(SyncFailure):
    """Local I/O failed."""

    error_type = "file_system"


class PermissionDeniedError(SyncFailure):
    """The store refused access to a document."""

    error_type = "permission"


class DocumentValidationError(SyncFailure):
    """Malformed metadata, a bad path, or residual conflict markers."""

    error_type = "validation"


class StoreConfigurationError(SyncFailure):
    """An adapter does not satisfy the store contract.

    Raised from ``SyncEngine.__init__``; this is the only failure that
    aborts work before any document is touched.
    """

    error_type = "validation"


class InvalidTransitionError(SyncFailure):
    """An operation was asked to leave a terminal state or go backwards."""

    error_type = "unknown"


def categorize_error(exc: BaseException) -> SyncError:
    """Map an exception to a ``SyncError``.

    Our own ``SyncFailure`` subclasses carry their category. Builtins are
    mapped by type: connection problems and timeouts are ``network``,
    ``PermissionError`` is ``permission``, other ``OSError`` is
    ``file_system``, and pydantic/YAML errors are ``validation``.
    """
    from .models import SyncError, SyncErrorType

    match exc:
        case SyncFailure():
            error_type = SyncErrorType(exc.error_type)
        case ConnectionError() | TimeoutError():
            error_type = SyncErrorType.NETWORK
        case PermissionError():
            error_type = SyncErrorType.PERMISSION
        case OSError():
            error_type = SyncErrorType.FILE_SYSTEM
        case PydanticValidationError() | yaml.YAMLError():
            error_type = SyncErrorType.VALIDATION
        case _:
            error_type = SyncErrorType.UNKNOWN

    cause = exc.__cause__
    return SyncError(
        type=error_type,
        message=str(exc) or type(exc).__name__,
        details=f"{type(cause).__name__}: {cause}" if cause else None,
    )
