"""Git integration."""

from .client import GitRepository, WorkingCopy

__all__ = [
    "GitRepository",
    "WorkingCopy",
]
