"""Read-only pool history - list revisions and fetch a lock at a revision."""

from pathlib import Path

import structlog

from .claims import ClaimTicket
from .errors import LockNotFoundError, RevisionNotFoundError, ValidationError
from .pool import CLAIMED, UNCLAIMED

logger = structlog.get_logger()


async def list_versions(
    repository,
    pool_name: str,
    since: str | None = None,
) -> list[str]:
    """Revisions touching the pool, oldest first.

    Without ``since`` only the newest one is returned. If ``since`` is no
    longer part of the branch history we fall back to the newest one too.
    """
    async with repository.checkout() as working_copy:
        if since is not None:
            try:
                await working_copy.ensure_revision(since)
            except RevisionNotFoundError:
                logger.warning("Version not in history", pool=pool_name, revision=since)
            else:
                return [since, *await working_copy.log(pool_name, since)]

        return await working_copy.log(pool_name)


async def fetch_lock(
    repository,
    pool_name: str,
    revision: str,
    dest: Path,
) -> ClaimTicket:
    """Write the lock changed by ``revision`` to ``dest/name`` and ``dest/metadata``."""
    async with repository.checkout() as working_copy:
        await working_copy.ensure_revision(revision)

        names = []
        for changed in await working_copy.changed_paths(revision, pool_name):
            path = Path(changed)
            if path.parent.name in (CLAIMED, UNCLAIMED) and not path.name.startswith("."):
                if path.name not in names:
                    names.append(path.name)

        if not names:
            raise LockNotFoundError(pool_name)
        lock_name = names[0]

        payload = None
        # A removal commit no longer has the file; read it from the parent
        for ref in (revision, f"{revision}^"):
            for collection in (CLAIMED, UNCLAIMED):
                payload = await working_copy.read_file(
                    ref, f"{pool_name}/{collection}/{lock_name}"
                )
                if payload is not None:
                    break
            if payload is not None:
                break

        if payload is None:
            raise LockNotFoundError(pool_name, lock_name)

    try:
        dest.mkdir(parents=True, exist_ok=True)
        (dest / "name").write_text(lock_name)
        (dest / "metadata").write_bytes(payload)
    except OSError as e:
        raise ValidationError(f"cannot write lock to {dest}: {e.strerror}") from e

    logger.info("Fetched lock", pool=pool_name, lock=lock_name, revision=revision)
    return ClaimTicket(lock_name, pool_name, revision)
