"""
Exception taxonomy for the storage layer and the inference engine.

Storage failures are surfaced to the immediate caller as typed exceptions and
are never retried here; retry policy belongs to whoever drives the core.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes, safe to hand to a UI layer."""

    # Storage (1xxx)
    STORAGE_ERROR = "E1000"
    ENGINE_OPEN_FAILED = "E1001"
    ENGINE_BLOCKED = "E1002"
    DUPLICATE_KEY = "E1003"
    NOT_FOUND = "E1004"
    TRANSACTION_FAILED = "E1005"
    READ_ONLY_TRANSACTION = "E1006"
    HANDLE_UNUSABLE = "E1007"

    # Inference (2xxx)
    INFERENCE_ERROR = "E2000"
    DEGENERATE_LEAF = "E2001"
    MISSING_FEATURE = "E2002"
    INVALID_TREE = "E2003"


class AuraSenseError(Exception):
    """Base exception for the package."""

    code: ErrorCode = ErrorCode.STORAGE_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "details": self.details}


# Storage ------------------------------------------------------------------


class StorageError(AuraSenseError):
    code = ErrorCode.STORAGE_ERROR


class EngineOpenFailed(StorageError):
    """The engine could not be opened or upgraded."""

    code = ErrorCode.ENGINE_OPEN_FAILED

    def __init__(self, reason: str, path: str | None = None) -> None:
        super().__init__(f"Failed to open database: {reason}", {"reason": reason, "path": path})
        self.reason = reason


class EngineBlocked(StorageError):
    """Another connection holds a lock that prevents the schema upgrade."""

    code = ErrorCode.ENGINE_BLOCKED

    def __init__(self, path: str, requested_version: int | None = None) -> None:
        super().__init__(
            f"Database {path} is blocked by another open connection",
            {"path": path, "requested_version": requested_version},
        )


class DuplicateKey(StorageError):
    code = ErrorCode.DUPLICATE_KEY

    def __init__(self, record_id: int | str, namespace: str) -> None:
        super().__init__(
            f'Item with id "{record_id}" already exists in store "{namespace}". '
            "Use update() instead.",
            {"id": record_id, "namespace": namespace},
        )
        self.record_id = record_id
        self.namespace = namespace


class NotFound(StorageError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, record_id: int | str, namespace: str) -> None:
        super().__init__(
            f'Item with id "{record_id}" not found in store "{namespace}". Use create() instead.',
            {"id": record_id, "namespace": namespace},
        )
        self.record_id = record_id
        self.namespace = namespace


class TransactionFailed(StorageError):
    code = ErrorCode.TRANSACTION_FAILED


class ReadOnlyTransaction(StorageError):
    code = ErrorCode.READ_ONLY_TRANSACTION

    def __init__(self, operation: str, namespace: str) -> None:
        super().__init__(
            f"Cannot {operation} in a readonly transaction on store {namespace!r}",
            {"operation": operation, "namespace": namespace},
        )


class HandleUnusable(StorageError):
    """An upgrade was interrupted; the handle must be closed before reuse."""

    code = ErrorCode.HANDLE_UNUSABLE


# Inference ----------------------------------------------------------------


class InferenceError(AuraSenseError):
    code = ErrorCode.INFERENCE_ERROR


class DegenerateLeaf(InferenceError):
    code = ErrorCode.DEGENERATE_LEAF

    def __init__(self, depth: int) -> None:
        super().__init__(
            f"Leaf at depth {depth} has an empty class distribution",
            {"depth": depth},
        )


class MissingFeature(InferenceError):
    code = ErrorCode.MISSING_FEATURE

    def __init__(self, feature: str, value: Any = None) -> None:
        super().__init__(
            f"Record has no numeric value for feature {feature!r}",
            {"feature": feature, "value": repr(value)},
        )
        self.feature = feature


class InvalidTree(InferenceError):
    code = ErrorCode.INVALID_TREE
