"""Lookup of target connection details by id."""

from .directory import InMemoryTargetDirectory, SqliteTargetDirectory, TargetDirectory

__all__ = ["InMemoryTargetDirectory", "SqliteTargetDirectory", "TargetDirectory"]
