"""Carry an SQLAlchemy engine or connection and its transaction through a context."""

__version__ = "0.1.0"