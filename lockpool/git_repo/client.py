"""Git client - working copies of one branch of a remote repository."""

import asyncio
import os
import re
import shlex
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

import structlog

from lockpool.coordination.errors import (
    GitCommandError,
    PublishConflictError,
    RefNotFoundError,
    RemoteUnreachableError,
    RevisionNotFoundError,
)
from lockpool.resource.config import Settings

logger = structlog.get_logger()

# Push rejections that mean "someone else published first"
REJECTION_PATTERN = re.compile(
    r"\[rejected\]|\[remote rejected\]|non-fast-forward|fetch first"
    r"|cannot lock ref|failed to update ref|stale info",
)

MISSING_REF_PATTERN = re.compile(
    r"Remote branch .* not found|couldn't find remote ref|not our ref",
    re.IGNORECASE,
)


@dataclass
class GitResult:
    """Output of a git invocation."""
    returncode: int
    stdout: bytes
    stderr: str

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace").strip()


class GitRepository:
    """One branch of a remote repository, checked out on demand."""

    def __init__(
        self,
        uri: str,
        branch: str,
        settings: Settings,
        private_key: str | None = None,
        depth: int = 0,
    ):
        self.uri = uri
        self.branch = branch
        self.settings = settings
        self.private_key = private_key
        self.depth = depth

    async def git(
        self,
        *args: str,
        cwd: Path | None = None,
        check: bool = True,
        env: dict[str, str] | None = None,
    ) -> GitResult:
        """Run git with the configured identity, credentials and timeout."""
        argv = [
            self.settings.git_executable,
            "-c", f"user.name={self.settings.committer_name}",
            "-c", f"user.email={self.settings.committer_email}",
            *args,
        ]

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd) if cwd else None,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0", **(env or {})},
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise GitCommandError(
                list(args),
                None,
                f"cannot run {self.settings.git_executable}: {e.strerror}",
                status="could not start",
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(),
                timeout=self.settings.git_timeout_seconds,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise GitCommandError(list(args), None, "")
        except asyncio.CancelledError:
            proc.kill()
            await asyncio.shield(proc.wait())
            raise

        result = GitResult(
            returncode=proc.returncode,
            stdout=stdout,
            stderr=stderr.decode("utf-8", errors="replace"),
        )

        logger.debug("git", args=args[:2], returncode=result.returncode)

        if check and result.returncode != 0:
            raise GitCommandError(list(args), result.returncode, result.stderr)
        return result

    def _depth_args(self) -> list[str]:
        return ["--depth", str(self.depth)] if self.depth > 0 else []

    def _connectivity_error(self, result: GitResult) -> Exception:
        if MISSING_REF_PATTERN.search(result.stderr):
            return RefNotFoundError(self.uri, self.branch)
        lines = result.stderr.strip().splitlines()
        return RemoteUnreachableError(self.uri, lines[-1] if lines else "")

    @asynccontextmanager
    async def checkout(self) -> AsyncIterator["WorkingCopy"]:
        """Clone the branch tip into a temporary working copy.

        The directory (and the private key, if any) is removed however the
        block exits.
        """
        with tempfile.TemporaryDirectory(prefix="lockpool-") as tmp:
            tmp_path = Path(tmp)
            env: dict[str, str] = {}
            key_file = None

            if self.private_key:
                key_file = tmp_path / "private_key"
                key_file.touch(mode=0o600)
                key_file.chmod(0o600)
                key_file.write_text(self.private_key.rstrip("\n") + "\n")
                env["GIT_SSH_COMMAND"] = (
                    f"ssh -i {shlex.quote(str(key_file))} "
                    "-o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null"
                )

            path = tmp_path / "repo"
            result = await self.git(
                "clone",
                "--single-branch",
                "--branch", self.branch,
                *self._depth_args(),
                self.uri,
                str(path),
                check=False,
                env=env,
            )
            if result.returncode != 0:
                raise self._connectivity_error(result)

            copy = WorkingCopy(self, path, env=env, key_file=key_file)
            await copy.refresh_revision()

            logger.info(
                "Checked out working copy",
                uri=self.uri,
                branch=self.branch,
                revision=copy.revision,
            )
            yield copy


class WorkingCopy:
    """A disposable clone, synchronized at a known revision.

    ``revision`` plus ``publish`` form a compare-and-swap on the remote
    branch: the push only succeeds while the branch still points at
    ``revision``.
    """

    def __init__(
        self,
        repository: GitRepository,
        path: Path,
        env: dict[str, str] | None = None,
        key_file: Path | None = None,
    ):
        self.repository = repository
        self.path = path
        self.env = dict(env or {})
        self.key_file = key_file
        self.revision = ""

    @property
    def _remote_ref(self) -> str:
        return f"refs/remotes/origin/{self.repository.branch}"

    async def _git(self, *args: str, check: bool = True) -> GitResult:
        return await self.repository.git(*args, cwd=self.path, check=check, env=self.env)

    async def refresh_revision(self) -> str:
        result = await self._git("rev-parse", "HEAD")
        self.revision = result.text
        return self.revision

    async def resync(self) -> str:
        """Throw away local commits and changes and move to the remote tip."""
        branch = self.repository.branch
        result = await self._git(
            "fetch",
            *self.repository._depth_args(),
            "origin",
            f"+refs/heads/{branch}:{self._remote_ref}",
            check=False,
        )
        if result.returncode != 0:
            raise self.repository._connectivity_error(result)

        await self._git("reset", "--hard", self._remote_ref)
        await self._git("clean", "-ffdx")
        await self.refresh_revision()

        logger.debug("Resynced working copy", branch=branch, revision=self.revision)
        return self.revision

    async def publish(self, message: str, *paths: str) -> str:
        """Commit pending changes under ``paths`` and push them as a fast-forward.

        With no ``paths`` every change in the working copy is staged.
        Raises PublishConflictError if the branch moved since the last sync.
        """
        branch = self.repository.branch
        synced_at = self.revision

        await self._git("add", "--all", "--", *(paths or (".",)))
        await self._git("commit", "--quiet", "-m", message)

        result = await self._git(
            "push",
            "--porcelain",
            "origin",
            f"HEAD:refs/heads/{branch}",
            check=False,
        )
        if result.returncode != 0:
            output = result.stderr + result.text
            if REJECTION_PATTERN.search(output):
                logger.info("Publish rejected", branch=branch, revision=synced_at)
                raise PublishConflictError(branch, synced_at)
            raise GitCommandError(["push", "origin", branch], result.returncode, result.stderr)

        await self.refresh_revision()
        logger.info("Published", branch=branch, revision=self.revision, message=message)
        return self.revision

    # === Read-only history ===

    async def has_revision(self, ref: str) -> bool:
        result = await self._git("cat-file", "-e", f"{ref}^{{commit}}", check=False)
        return result.returncode == 0

    async def ensure_revision(self, ref: str) -> None:
        """Make sure ``ref`` is present locally, deepening a shallow clone."""
        if await self.has_revision(ref):
            return
        if self.repository.depth > 0:
            await self._git("fetch", "--unshallow", "origin", check=False)
            if await self.has_revision(ref):
                return
        raise RevisionNotFoundError(self.repository.uri, ref)

    async def log(self, path: str, since: str | None = None) -> list[str]:
        """Revisions touching ``path``, oldest first."""
        if since is None:
            result = await self._git("log", "-1", "--format=%H", "HEAD", "--", path)
        else:
            result = await self._git(
                "log", "--format=%H", "--reverse", f"{since}..HEAD", "--", path,
            )
        return result.text.splitlines()

    async def changed_paths(self, ref: str, path: str) -> list[str]:
        """Paths under ``path`` added, deleted or renamed by commit ``ref``."""
        result = await self._git(
            "show", "--no-renames", "--pretty=format:", "--name-only", ref, "--", path,
        )
        return [line for line in result.text.splitlines() if line]

    async def read_file(self, ref: str, path: str) -> bytes | None:
        """Content of ``path`` at ``ref``, or None if it doesn't exist there."""
        result = await self._git("show", f"{ref}:{path}", check=False)
        if result.returncode != 0:
            return None
        return result.stdout
