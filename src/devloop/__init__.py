"""Dependency-aware task orchestration for development workflows."""

__version__ = "0.1.0"
