"""Lock pool view - claimed/unclaimed collections inside a working copy."""

from pathlib import Path

import structlog

from .errors import (
    InvalidLockNameError,
    LockAlreadyExistsError,
    LockNotFoundError,
    PoolNotFoundError,
)

logger = structlog.get_logger()

UNCLAIMED = "unclaimed"
CLAIMED = "claimed"


class LockPool:
    """Interprets ``<root>/<pool_name>`` as two disjoint lock collections.

    Every lock is a regular file whose name is the lock name and whose
    content is the lock's payload. Dotfiles such as ``.gitkeep`` keep the
    directories alive in git and are never treated as locks.

    Nothing here touches the remote; changes become visible only once the
    owning working copy publishes them.
    """

    def __init__(self, root: Path, pool_name: str):
        self.root = Path(root)
        self.pool_name = pool_name
        self.path = self.root / pool_name

    @property
    def unclaimed_dir(self) -> Path:
        return self.path / UNCLAIMED

    @property
    def claimed_dir(self) -> Path:
        return self.path / CLAIMED

    def _collection(self, directory: Path) -> Path:
        if not directory.is_dir():
            raise PoolNotFoundError(self.pool_name)
        return directory

    def _lock_path(self, directory: Path, name: str) -> Path:
        if not name or name in (".", "..") or "/" in name or "\\" in name or name.startswith("."):
            raise InvalidLockNameError(self.pool_name, name)
        return self._collection(directory) / name

    def _list(self, directory: Path) -> set[str]:
        return {
            entry.name
            for entry in self._collection(directory).iterdir()
            if entry.is_file() and not entry.name.startswith(".")
        }

    def list_unclaimed(self) -> set[str]:
        """Names of locks available to be claimed."""
        return self._list(self.unclaimed_dir)

    def list_claimed(self) -> set[str]:
        """Names of locks currently held."""
        return self._list(self.claimed_dir)

    def _move(self, name: str, source: Path, target: Path) -> None:
        src = self._lock_path(source, name)
        dst = self._lock_path(target, name)
        if not src.is_file():
            raise LockNotFoundError(self.pool_name, name)
        if dst.exists():
            raise LockAlreadyExistsError(self.pool_name, name)
        src.rename(dst)
        logger.debug(
            "Moved lock",
            pool=self.pool_name,
            lock=name,
            source=source.name,
            target=target.name,
        )

    def move_to_claimed(self, name: str) -> None:
        self._move(name, self.unclaimed_dir, self.claimed_dir)

    def move_to_unclaimed(self, name: str) -> None:
        self._move(name, self.claimed_dir, self.unclaimed_dir)

    def contains(self, name: str) -> bool:
        """Whether the name is present in either collection."""
        return (
            self._lock_path(self.unclaimed_dir, name).exists()
            or self._lock_path(self.claimed_dir, name).exists()
        )

    def add(self, name: str, payload: bytes, claimed: bool = False) -> None:
        """Create a new lock with the given payload."""
        if self.contains(name):
            raise LockAlreadyExistsError(self.pool_name, name)

        target = self.claimed_dir if claimed else self.unclaimed_dir
        self._lock_path(target, name).write_bytes(payload)
        logger.debug("Added lock", pool=self.pool_name, lock=name, claimed=claimed)

    def delete(self, name: str) -> None:
        """Remove a claimed lock from the pool entirely."""
        path = self._lock_path(self.claimed_dir, name)
        if not path.is_file():
            raise LockNotFoundError(self.pool_name, name)
        path.unlink()
        logger.debug("Deleted lock", pool=self.pool_name, lock=name)

    def read(self, name: str) -> bytes:
        """Payload of a lock from whichever collection holds it."""
        for directory in (self.unclaimed_dir, self.claimed_dir):
            path = self._lock_path(directory, name)
            if path.is_file():
                return path.read_bytes()
        raise LockNotFoundError(self.pool_name, name)
