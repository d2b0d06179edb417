"""
Error kinds surfaced by the reconciliation core.

None of them is fatal: the dispatcher turns every one into a requeue.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    CONFIG_NOT_READY = "ConfigNotReady"
    LOOKUP_ERROR = "LookupError"
    APPLY_ERROR = "ApplyError"
    OWNERSHIP_ERROR = "OwnershipError"
    LOG_RETRIEVAL_ERROR = "LogRetrievalError"
    POD_LIST_ERROR = "PodListError"
    DELETION_ERROR = "DeletionError"


class ReconcileError(Exception):
    """A failed reconciliation step, tagged with its ErrorKind."""

    def __init__(self, kind: ErrorKind, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.message = message
        self.cause = cause

    @property
    def retryable_silently(self) -> bool:
        """Expected during bootstrap; retried on the next resync without degrading status."""
        return self.kind == ErrorKind.CONFIG_NOT_READY


class NotFoundError(Exception):
    """Raised by KubeClient.get when the object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class OwnershipError(ValueError):
    """The owner reference could not be set on an object."""
