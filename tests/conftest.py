"""Shared fixtures - an in-memory remote and local bare git repositories."""

import asyncio
import hashlib
import shutil
import subprocess
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
import structlog

from lockpool.coordination.errors import PublishConflictError
from lockpool.resource.config import Settings

GIT_IDENTITY = ["-c", "user.name=Test Setup", "-c", "user.email=setup@localhost"]


def pool_files(unclaimed=(), claimed=(), pool="lock-pool") -> dict[str, bytes]:
    """Repository contents for a pool; payload of each lock is ``<name>-payload``."""
    files = {
        f"{pool}/unclaimed/.gitkeep": b"",
        f"{pool}/claimed/.gitkeep": b"",
    }
    for name in unclaimed:
        files[f"{pool}/unclaimed/{name}"] = f"{name}-payload".encode()
    for name in claimed:
        files[f"{pool}/claimed/{name}"] = f"{name}-payload".encode()
    return files


class MemoryRemote:
    """Compare-and-swap store standing in for the remote branch.

    Working copies are real temporary directories so the pool view works
    unchanged. Every await point yields to the event loop, letting
    concurrently running coordinators interleave.
    """

    def __init__(self, files: dict[str, bytes]):
        self.history: list[tuple[str, dict[str, bytes]]] = []
        self.messages: list[str] = []
        self.conflicts = 0
        self.open_checkouts = 0
        self._append(dict(files), "initial")

    def _append(self, files: dict[str, bytes], message: str) -> str:
        digest = hashlib.sha1(f"{len(self.history)}:{message}".encode())
        for path in sorted(files):
            digest.update(path.encode() + b"\0" + files[path])
        revision = digest.hexdigest()
        self.history.append((revision, files))
        self.messages.append(message)
        return revision

    @property
    def tip(self) -> str:
        return self.history[-1][0]

    @property
    def files(self) -> dict[str, bytes]:
        return self.history[-1][1]

    def names(self, collection: str, pool: str = "lock-pool") -> set[str]:
        prefix = f"{pool}/{collection}/"
        return {
            path[len(prefix):]
            for path in self.files
            if path.startswith(prefix) and not path[len(prefix):].startswith(".")
        }

    def move(self, name: str, source: str, target: str, pool: str = "lock-pool") -> str:
        """Publish a move on behalf of some other process."""
        files = dict(self.files)
        files[f"{pool}/{target}/{name}"] = files.pop(f"{pool}/{source}/{name}")
        return self._append(files, f"external move {name}")

    def compare_and_swap(self, expected: str, files: dict[str, bytes], message: str) -> str:
        if expected != self.tip:
            self.conflicts += 1
            raise PublishConflictError("master", expected)
        return self._append(files, message)

    @asynccontextmanager
    async def checkout(self):
        with tempfile.TemporaryDirectory(prefix="memory-remote-") as tmp:
            self.open_checkouts += 1
            try:
                copy = MemoryWorkingCopy(self, Path(tmp))
                copy.materialize()
                await asyncio.sleep(0)
                yield copy
            finally:
                self.open_checkouts -= 1


class MemoryWorkingCopy:
    def __init__(self, remote: MemoryRemote, path: Path):
        self.remote = remote
        self.path = path
        self.revision = ""

    def materialize(self) -> None:
        for child in self.path.iterdir():
            if child.is_dir():
                shutil.rmtree(child)
            else:
                child.unlink()
        for relative, content in self.remote.files.items():
            target = self.path / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        self.revision = self.remote.tip

    def snapshot(self) -> dict[str, bytes]:
        return {
            path.relative_to(self.path).as_posix(): path.read_bytes()
            for path in self.path.rglob("*")
            if path.is_file()
        }

    async def resync(self) -> str:
        await asyncio.sleep(0)
        self.materialize()
        return self.revision

    async def publish(self, message: str, *paths: str) -> str:
        files = self.snapshot()
        await asyncio.sleep(0)
        self.revision = self.remote.compare_and_swap(self.revision, files, message)
        return self.revision


class FakeClock:
    """Injected sleep that advances simulated time instead of blocking."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


@pytest.fixture
def make_remote():
    """Build an in-memory remote holding one pool."""

    def factory(unclaimed=(), claimed=()):
        return MemoryRemote(pool_files(unclaimed=unclaimed, claimed=claimed))

    return factory


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Create test settings."""
    return Settings(
        git_timeout_seconds=60,
        committer_name="Test Committer",
        committer_email="test@localhost",
        default_retry_delay_seconds=0.1,
    )


def git(*args: str, cwd: Path) -> str:
    result = subprocess.run(
        ["git", *GIT_IDENTITY, *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def make_bare_repo(root: Path, files: dict[str, bytes], branch: str = "master") -> Path:
    """Seed a repository with ``files`` and return a bare clone of it."""
    seed = root / "seed"
    seed.mkdir()
    git("init", "--quiet", f"--initial-branch={branch}", cwd=seed)
    for relative, content in files.items():
        target = seed / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    git("add", "--all", cwd=seed)
    git("commit", "--quiet", "-m", "initial pool", cwd=seed)

    bare = root / "remote.git"
    git("clone", "--quiet", "--bare", str(seed), str(bare), cwd=root)
    return bare


class RemoteInspector:
    """Looks at a bare repository through fresh clones."""

    def __init__(self, bare: Path, branch: str, scratch: Path):
        self.bare = bare
        self.branch = branch
        self.scratch = scratch
        self._clones = 0

    @property
    def tip(self) -> str:
        return git("rev-parse", f"refs/heads/{self.branch}", cwd=self.bare)

    def clone(self) -> Path:
        self._clones += 1
        target = self.scratch / f"clone-{self._clones}"
        git("clone", "--quiet", "--branch", self.branch, str(self.bare), str(target), cwd=self.scratch)
        return target

    def names(self, collection: str, pool: str = "lock-pool") -> set[str]:
        directory = self.clone() / pool / collection
        return {entry.name for entry in directory.iterdir() if not entry.name.startswith(".")}

    def push_move(self, name: str, source: str, target: str, pool: str = "lock-pool") -> str:
        """Move a lock the way another pipeline would, straight with git."""
        clone = self.clone()
        git("mv", f"{pool}/{source}/{name}", f"{pool}/{target}/{name}", cwd=clone)
        git("commit", "--quiet", "-m", f"moving {name}", cwd=clone)
        git("push", "--quiet", "origin", f"HEAD:refs/heads/{self.branch}", cwd=clone)
        return git("rev-parse", "HEAD", cwd=clone)


@pytest.fixture(params=["master", "another-branch"])
def branch(request):
    return request.param


@pytest.fixture
def bare_repo(tmp_path, branch):
    """A bare repository with two unclaimed locks."""
    if shutil.which("git") is None:
        pytest.skip("Requires git")
    return make_bare_repo(tmp_path, pool_files(unclaimed=["some-lock", "some-other-lock"]), branch)


@pytest.fixture
def remote(bare_repo, branch, tmp_path):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return RemoteInspector(bare_repo, branch, scratch)


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo logging configuration done by the command line tests."""
    yield
    structlog.reset_defaults()
