"""Lock pool exception classes."""


class LockPoolError(Exception):
    """Base exception for all lock pool errors."""
    pass


class ValidationError(LockPoolError):
    """Raised when a request is missing required fields."""
    pass


# === Connectivity ===

class ConnectivityError(LockPoolError):
    """Raised when the remote repository cannot be used at all."""
    pass


class RemoteUnreachableError(ConnectivityError):
    """Raised when the remote cannot be contacted or rejects our credentials."""

    def __init__(self, uri: str, detail: str = ""):
        message = f"remote unreachable: {uri}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.uri = uri


class RefNotFoundError(ConnectivityError):
    """Raised when the configured branch does not exist on the remote."""

    def __init__(self, uri: str, branch: str):
        super().__init__(f"branch '{branch}' not found in {uri}")
        self.uri = uri
        self.branch = branch


class RevisionNotFoundError(ConnectivityError):
    """Raised when a requested revision isn't in the remote's history."""

    def __init__(self, uri: str, revision: str):
        super().__init__(f"revision {revision} not found in {uri}")
        self.uri = uri
        self.revision = revision


class GitCommandError(LockPoolError):
    """Raised when a git invocation fails for a reason we don't classify."""

    def __init__(
        self,
        args: list[str],
        returncode: int | None,
        stderr: str,
        status: str | None = None,
    ):
        command = " ".join(args)
        if status is None:
            status = "timed out" if returncode is None else f"exited {returncode}"
        super().__init__(f"git command failed ({status}): {command}: {stderr.strip()}")
        self.args_ = args
        self.returncode = returncode
        self.stderr = stderr


# === Contention ===

class PublishConflictError(LockPoolError):
    """Raised when the remote branch moved since the working copy was synced."""

    def __init__(self, branch: str, revision: str):
        super().__init__(f"branch '{branch}' advanced past {revision}")
        self.branch = branch
        self.revision = revision


# === Logical ===

class PoolLockError(LockPoolError):
    """Base for errors about a specific lock in a specific pool."""

    reason = "lock error"

    def __init__(self, pool_name: str, lock_name: str | None = None):
        if lock_name is None:
            message = f"{self.reason} (pool: {pool_name})"
        else:
            message = f"{self.reason} (pool: {pool_name}, lock: {lock_name})"
        super().__init__(message)
        self.pool_name = pool_name
        self.lock_name = lock_name


class PoolNotFoundError(PoolLockError):
    reason = "pool directory not found"


class InvalidLockNameError(PoolLockError):
    reason = "invalid lock name"


class LockNotFoundError(PoolLockError):
    reason = "lock not found"


class LockAlreadyExistsError(PoolLockError):
    reason = "lock already exists"


class LockNotClaimedError(PoolLockError):
    """Raised by release/remove when the lock isn't in the claimed collection."""

    reason = "lock is not claimed"


class DuplicateLockError(PoolLockError):
    """Raised by add when the name already exists in the pool."""

    reason = "lock already exists in pool"
