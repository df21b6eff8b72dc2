"""
Error taxonomy surfaced by every engine operation.

Validation, not-found and conflict errors signal caller misuse and are raised
immediately. Dependency errors are raised only after internal retries are
exhausted. A NotFoundError never reveals whether the id exists in another scope.
"""


class MemoryEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(MemoryEngineError, ValueError):
    """Malformed input: empty content, self-loop, out-of-range value, missing scope."""


class NotFoundError(MemoryEngineError):
    """Unknown id, or an id that belongs to a different scope."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ConflictError(MemoryEngineError):
    """Double finalization, duplicate terminal transition, or a lost optimistic write."""


class DependencyError(MemoryEngineError):
    """Embedding provider or storage engine failure after retries."""

    def __init__(self, message: str, memory_id: str | None = None):
        super().__init__(message)
        # Set when a FAILED memory was persisted for diagnostics
        self.memory_id = memory_id


class StorageError(DependencyError):
    """Storage backend failure (circuit open, unreachable, rejected write)."""


class DeadlineExceededError(MemoryEngineError, TimeoutError):
    """Caller-supplied deadline expired before the operation completed."""
