# src/polyorm/__init__.py
"""
PolyORM - Backend-neutral async object mapper
Condition model, fluent queries, validation, hooks and relations over
memory, SQLite, PostgreSQL and MongoDB adapters
"""

__version__ = "0.1.0"

from .connection import Connection
from .entity import Entity
from .factory import ConnectionSettings, create_adapter
from .condition import Condition, Operator, Projection
from .query import QueryBuilder, Selected
from .hooks import Hook
from .decorators import backend, hook
from .models import FieldSpec, ModelDefinition, PrimaryKey, Relation, RelationKind
from .registry import AdapterRegistry
from .validation import FieldError, Validation, ValidationResult
from .types import Adapter, IdentifierKind
from .errors import (
    PolyORMError,
    ConnectionError,
    UnknownBackendError,
    DriverNotInstalledError,
    AdapterError,
    DatabaseError,
    DocumentStoreError,
    InvalidConditionError,
    InvalidModelDefinitionError,
    ModelNotRegisteredError,
    UnsafeIdentifierError,
    OperationNotSupportedError,
)

__all__ = [
    # Core
    "Connection",
    "Entity",
    "ConnectionSettings",
    "create_adapter",
    # Query
    "Condition",
    "Operator",
    "Projection",
    "QueryBuilder",
    "Selected",
    # Models & hooks
    "FieldSpec",
    "ModelDefinition",
    "PrimaryKey",
    "Relation",
    "RelationKind",
    "Hook",
    "hook",
    "backend",
    "AdapterRegistry",
    "Adapter",
    "IdentifierKind",
    # Validation
    "Validation",
    "FieldError",
    "ValidationResult",
    # Errors
    "PolyORMError",
    "ConnectionError",
    "UnknownBackendError",
    "DriverNotInstalledError",
    "AdapterError",
    "DatabaseError",
    "DocumentStoreError",
    "InvalidConditionError",
    "InvalidModelDefinitionError",
    "ModelNotRegisteredError",
    "UnsafeIdentifierError",
    "OperationNotSupportedError",
]
