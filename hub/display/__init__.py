"""Display model + update scheduling."""

from .nodes import ContentNode, Display, Region  # noqa: F401
from .scheduler import (  # noqa: F401
    IMMEDIATE,
    DomUpdateScheduler,
    TransitionKind,
    TransitionOptions,
)

__all__ = [
    "ContentNode",
    "Display",
    "Region",
    "DomUpdateScheduler",
    "TransitionKind",
    "TransitionOptions",
    "IMMEDIATE",
]
