# src/polyorm/base/__init__.py
