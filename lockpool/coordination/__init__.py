"""Coordination layer - lock pool view and claim protocol."""

from .claims import CLAIM_TRANSITIONS, ClaimState, ClaimTicket, PoolCoordinator
from .pool import LockPool
from .versions import fetch_lock, list_versions

__all__ = [
    "CLAIM_TRANSITIONS",
    "ClaimState",
    "ClaimTicket",
    "LockPool",
    "PoolCoordinator",
    "fetch_lock",
    "list_versions",
]
