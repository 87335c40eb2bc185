# src/polyorm/adapters/__init__.py
from .MemoryAdapter import MemoryAdapter
from .SQLiteAdapter import SQLiteAdapter
from .PostgreSQLAdapter import PostgreSQLAdapter
from .MongoDBAdapter import MongoDBAdapter

__all__ = [
    "MemoryAdapter",
    "SQLiteAdapter",
    "PostgreSQLAdapter",
    "MongoDBAdapter",
]
