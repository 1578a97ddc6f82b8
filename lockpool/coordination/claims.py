"""Pool coordination - claim, release, remove and add locks.

Every operation works on its own working copy and retries until the remote
accepts its publish. Losing a publish race is never an error: the copy is
resynced to whatever the winner published and the operation starts over.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

import structlog

from .errors import (
    DuplicateLockError,
    LockAlreadyExistsError,
    LockNotClaimedError,
    LockNotFoundError,
    PublishConflictError,
)
from .pool import LockPool

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]


class ClaimState(str, Enum):
    """Claim loop states."""
    SYNC = "sync"
    SELECT = "select"
    TRANSITION = "transition"
    PUBLISH = "publish"
    WAIT = "wait"
    DONE = "done"


# Valid state transitions
CLAIM_TRANSITIONS: dict[ClaimState, list[ClaimState]] = {
    ClaimState.SYNC: [ClaimState.SELECT],
    ClaimState.SELECT: [ClaimState.TRANSITION, ClaimState.WAIT],  # candidate or empty
    ClaimState.TRANSITION: [ClaimState.PUBLISH],
    ClaimState.PUBLISH: [ClaimState.DONE, ClaimState.SYNC],  # won or lost the race
    ClaimState.WAIT: [ClaimState.SYNC],
    ClaimState.DONE: [],  # terminal
}


@dataclass(frozen=True)
class ClaimTicket:
    """Identifies the lock an operation acted on and the revision it produced."""
    lock_name: str
    pool_name: str
    revision: str


class PoolCoordinator:
    """Runs lock state transitions for one pool against one repository.

    ``repository`` only needs a ``checkout()`` async context manager yielding
    a working copy with ``path``, ``revision``, ``resync()`` and
    ``publish(message, *paths)``.
    """

    def __init__(
        self,
        repository,
        pool_name: str,
        retry_delay: float = 10.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.repository = repository
        self.pool_name = pool_name
        self.retry_delay = retry_delay
        self.sleep = sleep

    def _message(self, verb: str, lock_name: str) -> str:
        return f"{self.pool_name}: {verb} {lock_name}"

    def _advance(self, current: ClaimState, new_state: ClaimState) -> ClaimState:
        valid_next = CLAIM_TRANSITIONS[current]
        if new_state not in valid_next:
            raise ValueError(
                f"Invalid transition: {current} -> {new_state}. "
                f"Valid: {valid_next}"
            )
        return new_state

    def _select(self, pool: LockPool, wanted: str | None) -> str | None:
        """Pick the lock to claim, or None if we have to wait."""
        unclaimed = pool.list_unclaimed()

        if wanted is None:
            return min(unclaimed) if unclaimed else None

        if wanted in unclaimed:
            return wanted
        if wanted in pool.list_claimed():
            return None
        raise LockNotFoundError(self.pool_name, wanted)

    # === Claim ===

    async def acquire(self) -> ClaimTicket:
        """Claim any unclaimed lock, waiting as long as it takes."""
        return await self._claim(None)

    async def claim(self, lock_name: str) -> ClaimTicket:
        """Claim one specific lock, waiting while someone else holds it."""
        return await self._claim(lock_name)

    async def _claim(self, wanted: str | None) -> ClaimTicket:
        async with self.repository.checkout() as working_copy:
            pool = LockPool(working_copy.path, self.pool_name)

            state = ClaimState.SYNC
            fresh = True
            candidate: str | None = None
            ticket: ClaimTicket | None = None
            attempts = 0

            while state is not ClaimState.DONE:
                match state:
                    case ClaimState.SYNC:
                        # The checkout itself is the first sync
                        if not fresh:
                            await working_copy.resync()
                        fresh = False
                        attempts += 1
                        next_state = ClaimState.SELECT

                    case ClaimState.SELECT:
                        candidate = self._select(pool, wanted)
                        if candidate is None:
                            next_state = ClaimState.WAIT
                        else:
                            next_state = ClaimState.TRANSITION

                    case ClaimState.TRANSITION:
                        pool.move_to_claimed(candidate)
                        next_state = ClaimState.PUBLISH

                    case ClaimState.PUBLISH:
                        try:
                            revision = await working_copy.publish(
                                self._message("claiming", candidate), self.pool_name
                            )
                        except PublishConflictError:
                            logger.info(
                                "Lost claim race, resyncing",
                                pool=self.pool_name,
                                lock=candidate,
                                attempt=attempts,
                            )
                            next_state = ClaimState.SYNC
                        else:
                            ticket = ClaimTicket(candidate, self.pool_name, revision)
                            next_state = ClaimState.DONE

                    case ClaimState.WAIT:
                        logger.info(
                            "No lock available, waiting",
                            pool=self.pool_name,
                            lock=wanted,
                            retry_delay=self.retry_delay,
                        )
                        await self.sleep(self.retry_delay)
                        next_state = ClaimState.SYNC

                state = self._advance(state, next_state)

        logger.info(
            "Claimed lock",
            pool=self.pool_name,
            lock=ticket.lock_name,
            revision=ticket.revision,
            attempts=attempts,
        )
        return ticket

    # === Single-target transitions ===

    async def _transition(
        self,
        lock_name: str,
        verb: str,
        mutate: Callable[[LockPool], None],
    ) -> ClaimTicket:
        """Apply ``mutate`` and publish it, resyncing after every lost race."""
        async with self.repository.checkout() as working_copy:
            pool = LockPool(working_copy.path, self.pool_name)
            attempts = 0

            while True:
                if attempts:
                    await working_copy.resync()
                attempts += 1

                mutate(pool)

                try:
                    revision = await working_copy.publish(
                        self._message(verb, lock_name), self.pool_name
                    )
                except PublishConflictError:
                    logger.info(
                        "Lost publish race, resyncing",
                        pool=self.pool_name,
                        lock=lock_name,
                        operation=verb,
                        attempt=attempts,
                    )
                    continue

                logger.info(
                    "Published lock transition",
                    pool=self.pool_name,
                    lock=lock_name,
                    operation=verb,
                    revision=revision,
                    attempts=attempts,
                )
                return ClaimTicket(lock_name, self.pool_name, revision)

    async def release(self, lock_name: str) -> ClaimTicket:
        """Move a claimed lock back to unclaimed."""

        def mutate(pool: LockPool) -> None:
            try:
                pool.move_to_unclaimed(lock_name)
            except LockNotFoundError:
                raise LockNotClaimedError(self.pool_name, lock_name) from None

        return await self._transition(lock_name, "unclaiming", mutate)

    async def remove(self, lock_name: str) -> ClaimTicket:
        """Delete a claimed lock from the pool."""

        def mutate(pool: LockPool) -> None:
            try:
                pool.delete(lock_name)
            except LockNotFoundError:
                raise LockNotClaimedError(self.pool_name, lock_name) from None

        return await self._transition(lock_name, "removing", mutate)

    async def add(self, lock_name: str, payload: bytes, claimed: bool = False) -> ClaimTicket:
        """Create a new lock, unclaimed unless ``claimed`` is set."""

        def mutate(pool: LockPool) -> None:
            try:
                pool.add(lock_name, payload, claimed=claimed)
            except LockAlreadyExistsError:
                raise DuplicateLockError(self.pool_name, lock_name) from None

        verb = "adding claimed" if claimed else "adding"
        return await self._transition(lock_name, verb, mutate)
