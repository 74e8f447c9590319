"""Task execution providers."""

from devloop.providers.shell import ShellProvider

__all__ = ["ShellProvider"]
