"""Resource - request handling and command line entry points."""

from .config import Settings
from .models import CheckRequest, InRequest, OutRequest, OutResponse

__all__ = [
    "CheckRequest",
    "InRequest",
    "OutRequest",
    "OutResponse",
    "Settings",
]
