# src/ogmalchemy/exceptions.py
"""
ogmalchemy error taxonomy.

Every error raised by the mapper derives from OGMError. Errors coming from the
Neo4j driver (connection loss, constraint violations) are never wrapped: they
reach the caller unchanged.
"""

from typing import Any, Optional


class OGMError(Exception):
    """Base class for all ogmalchemy errors."""


class ConfigurationError(OGMError):
    """Entity declarations cannot be turned into mapping metadata."""


class SessionClosedError(OGMError):
    """An operation was attempted on a session that has been closed."""

    def __init__(self, session_id: str, operation: str):
        self.session_id = session_id
        self.operation = operation
        super().__init__(f"Session {session_id} is closed; cannot {operation}")


class UnsupportedDerivationError(OGMError):
    """A finder name cannot be turned into a query."""

    def __init__(self, method_name: str, reason: str):
        self.method_name = method_name
        self.reason = reason
        super().__init__(f"Cannot derive query from '{method_name}': {reason}")


class QueryBindingError(OGMError):
    """Arguments supplied to a query do not match its parameters."""


class EntityNotFoundError(OGMError, LookupError):
    """No node or relationship exists for the requested identity."""

    def __init__(self, kind: str, identity: Any):
        self.kind = kind
        self.identity = identity
        super().__init__(f"{kind} with identity {identity!r} not found")


class MappingError(OGMError):
    """A record and an entity cannot be translated into each other."""


class QueryExecutionError(OGMError):
    """The graph store cannot execute the requested query."""


class ConstraintViolationError(OGMError):
    """A write would break a uniqueness constraint of the in-memory store."""

    def __init__(self, label: str, key: str, value: Any, existing: Optional[str] = None):
        self.label = label
        self.key = key
        self.value = value
        self.existing = existing
        super().__init__(
            f"Node :{label} with {key}={value!r} already exists"
            + (f" (identity {existing})" if existing is not None else "")
        )
