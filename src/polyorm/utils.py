# src/polyorm/utils.py
"""
Identifier guards, blank checks and logger setup
"""

import re
import logging
from typing import Any

from .errors import UnsafeIdentifierError

_TABLE_NAME = re.compile(r'^[a-zA-Z0-9_-]+$')
_COLUMN_NAME = re.compile(r'^[a-zA-Z0-9_]+$')


def validate_table_name(table: str) -> str:
    """
    Guard a table or collection name before it is spliced into a statement.
    Letters, digits, underscore and hyphen only.
    """
    if not isinstance(table, str) or not _TABLE_NAME.match(table):
        raise UnsafeIdentifierError(
            f"Invalid table name: '{table}'. Only alphanumeric, underscore, and hyphen allowed."
        )
    return table


def validate_column_name(column: str) -> str:
    """
    Guard a field name before it is spliced into a statement.
    Letters, digits and underscore only.
    """
    if not isinstance(column, str) or not _COLUMN_NAME.match(column):
        raise UnsafeIdentifierError(
            f"Invalid column name: '{column}'. Only alphanumeric and underscore allowed."
        )
    return column


def quote_identifier(name: str) -> str:
    """Validated, double-quoted identifier usable by SQLite and PostgreSQL."""
    return f'"{validate_column_name(name)}"'


def quote_table(name: str) -> str:
    return f'"{validate_table_name(name)}"'


def is_blank(value: Any) -> bool:
    """None, empty strings and empty containers are blank."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Logger with the package-wide format; repeated calls do not stack handlers"""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.hasHandlers():
        logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(handler)

    return logger
