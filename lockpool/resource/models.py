"""Request and response payloads."""

import re
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, field_validator

from lockpool.coordination.errors import ValidationError

DURATION_PATTERN = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> float:
    """Parse a duration like ``"1h5m10s"`` or ``"100ms"`` into seconds."""
    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return 0.0

    total = 0.0
    position = 0
    for match in DURATION_PATTERN.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * DURATION_UNITS[match.group(2)]
        position = match.end()

    if position == 0 or position != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return sign * total


class Source(BaseModel):
    """Where the pool lives."""
    uri: str = ""
    branch: str = ""
    pool: str = ""
    private_key: str | None = None
    depth: int = 0
    retry_delay: float | None = None  # seconds

    @field_validator("retry_delay", mode="before")
    @classmethod
    def _parse_retry_delay(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_duration(value)
        return value

    def check_required(self) -> None:
        """Raise ValidationError naming the first missing field."""
        for name in ("uri", "pool", "branch"):
            if not getattr(self, name):
                raise ValidationError(f"invalid payload (missing {name})")


class Version(BaseModel):
    """A pool revision."""
    ref: str


class MetadataPair(BaseModel):
    name: str
    value: str


class OutResponse(BaseModel):
    """Revision produced (or fetched) plus which lock it concerns."""
    version: Version
    metadata: list[MetadataPair] = []

    @classmethod
    def for_lock(cls, revision: str, lock_name: str, pool_name: str) -> "OutResponse":
        return cls(
            version=Version(ref=revision),
            metadata=[
                MetadataPair(name="lock_name", value=lock_name),
                MetadataPair(name="pool_name", value=pool_name),
            ],
        )


# === Operations ===

@dataclass(frozen=True)
class Acquire:
    """Claim any available lock."""


@dataclass(frozen=True)
class Claim:
    """Claim one named lock."""
    lock_name: str


@dataclass(frozen=True)
class Release:
    """Release the lock described by a ticket directory."""
    ticket_dir: str


@dataclass(frozen=True)
class Remove:
    """Remove the lock described by a ticket directory."""
    ticket_dir: str


@dataclass(frozen=True)
class Add:
    """Add the lock described by a directory with ``name`` and ``metadata``."""
    lock_dir: str
    claimed: bool = False


Operation = Acquire | Claim | Release | Remove | Add


class OutParams(BaseModel):
    """Exactly one of these selects the operation."""
    acquire: bool = False
    claim: str | None = None
    release: str | None = None
    remove: str | None = None
    add: str | None = None
    add_claimed: str | None = None

    def operation(self) -> Operation:
        candidates: list[Operation] = []
        if self.acquire:
            candidates.append(Acquire())
        if self.claim:
            candidates.append(Claim(self.claim))
        if self.release:
            candidates.append(Release(self.release))
        if self.remove:
            candidates.append(Remove(self.remove))
        if self.add:
            candidates.append(Add(self.add))
        if self.add_claimed:
            candidates.append(Add(self.add_claimed, claimed=True))

        if not candidates:
            raise ValidationError("invalid payload (missing acquire, release, remove, or add)")
        if len(candidates) > 1:
            raise ValidationError(
                "invalid payload (only one of acquire, claim, release, remove, add, or add_claimed)"
            )
        return candidates[0]


class OutRequest(BaseModel):
    source: Source = Source()
    params: OutParams = OutParams()


class InRequest(BaseModel):
    source: Source = Source()
    version: Version


class CheckRequest(BaseModel):
    source: Source = Source()
    version: Version | None = None
