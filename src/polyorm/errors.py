# src/polyorm/errors.py
"""
Structured exceptions for entity and adapter operations
"""
from __future__ import annotations


class PolyORMError(Exception):
    """Base exception for polyorm."""

    pass


class ConnectionError(PolyORMError):
    """Connection to the backend failed"""

    pass


class UnknownBackendError(ConnectionError):
    """Raised when no adapter is registered under the requested driver name."""

    pass


class DriverNotInstalledError(ConnectionError):
    """Raised when the Python driver for a backend cannot be imported."""

    pass


class AdapterError(PolyORMError):
    """Backend operation failed"""

    pass


class DatabaseError(AdapterError):
    """SQL database operation failed"""

    pass


class DocumentStoreError(AdapterError):
    """Document store operation failed"""

    pass


class InvalidConditionError(PolyORMError):
    """Raised when a condition uses an unknown operator or a malformed operand."""

    pass


class InvalidModelDefinitionError(PolyORMError):
    """Raised when a model carries invalid __polyorm__ metadata."""

    pass


class ModelNotRegisteredError(PolyORMError):
    """Raised when a model has not been defined on the connection."""

    pass


class UnsafeIdentifierError(PolyORMError):
    """Raised when a table or column name fails the identifier guard."""

    pass


class OperationNotSupportedError(PolyORMError):
    """Raised when an adapter cannot perform a requested operation."""

    pass
