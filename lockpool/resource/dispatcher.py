"""Request dispatcher - routes resource requests to pool operations."""

import asyncio
from pathlib import Path

import structlog

from lockpool.coordination.claims import ClaimTicket, PoolCoordinator, Sleep
from lockpool.coordination.errors import ValidationError
from lockpool.coordination.versions import fetch_lock, list_versions
from lockpool.git_repo.client import GitRepository

from .config import Settings
from .models import (
    Acquire,
    Add,
    CheckRequest,
    Claim,
    InRequest,
    OutRequest,
    OutResponse,
    Release,
    Remove,
    Source,
    Version,
)

logger = structlog.get_logger()


class PoolResource:
    """Handles check, in and out requests for a lock pool."""

    def __init__(self, settings: Settings, sleep: Sleep = asyncio.sleep):
        self.settings = settings
        self.sleep = sleep

    def _repository(self, source: Source) -> GitRepository:
        return GitRepository(
            uri=source.uri,
            branch=source.branch,
            settings=self.settings,
            private_key=source.private_key,
            depth=source.depth,
        )

    def _coordinator(self, source: Source) -> PoolCoordinator:
        retry_delay = source.retry_delay
        if retry_delay is None:
            retry_delay = self.settings.default_retry_delay_seconds
        return PoolCoordinator(
            self._repository(source),
            source.pool,
            retry_delay=retry_delay,
            sleep=self.sleep,
        )

    def _read_field(self, directory: Path, field: str) -> str:
        path = directory / field
        try:
            return path.read_text().strip()
        except OSError as e:
            raise ValidationError(f"invalid payload (cannot read {path}: {e.strerror})") from e

    async def out(self, request: OutRequest, sources_dir: Path) -> OutResponse:
        """Perform the one mutation the request asks for."""
        request.source.check_required()
        operation = request.params.operation()

        coordinator = self._coordinator(request.source)

        logger.info(
            "Handling out request",
            pool=request.source.pool,
            branch=request.source.branch,
            operation=type(operation).__name__.lower(),
        )

        ticket: ClaimTicket
        match operation:
            case Acquire():
                ticket = await coordinator.acquire()
            case Claim(lock_name=lock_name):
                ticket = await coordinator.claim(lock_name)
            case Release(ticket_dir=ticket_dir):
                lock_name = self._read_field(sources_dir / ticket_dir, "name")
                ticket = await coordinator.release(lock_name)
            case Remove(ticket_dir=ticket_dir):
                lock_name = self._read_field(sources_dir / ticket_dir, "name")
                ticket = await coordinator.remove(lock_name)
            case Add(lock_dir=lock_dir, claimed=claimed):
                lock_path = sources_dir / lock_dir
                lock_name = self._read_field(lock_path, "name")
                try:
                    payload = (lock_path / "metadata").read_bytes()
                except OSError as e:
                    raise ValidationError(
                        f"invalid payload (cannot read {lock_path / 'metadata'}: {e.strerror})"
                    ) from e
                ticket = await coordinator.add(lock_name, payload, claimed=claimed)

        return OutResponse.for_lock(ticket.revision, ticket.lock_name, ticket.pool_name)

    async def get(self, request: InRequest, dest: Path) -> OutResponse:
        """Materialize the lock touched by the requested version."""
        request.source.check_required()

        ticket = await fetch_lock(
            self._repository(request.source),
            request.source.pool,
            request.version.ref,
            dest,
        )
        return OutResponse.for_lock(ticket.revision, ticket.lock_name, ticket.pool_name)

    async def check(self, request: CheckRequest) -> list[Version]:
        """List versions of the pool since the requested one."""
        request.source.check_required()

        since = request.version.ref if request.version else None
        refs = await list_versions(
            self._repository(request.source),
            request.source.pool,
            since,
        )
        return [Version(ref=ref) for ref in refs]
