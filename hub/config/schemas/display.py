"""Display schemas: regions, placements, transition defaults."""
from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_POSITIONS = [
    "top_bar",
    "top_left",
    "top_center",
    "top_right",
    "upper_third",
    "middle_center",
    "lower_third",
    "bottom_left",
    "bottom_center",
    "bottom_right",
    "bottom_bar",
    "fullscreen_above",
    "fullscreen_below",
]


class ModulePlacement(BaseModel):
    """One configured module instance (user side of the config)."""

    module: str
    position: str | None = None
    header: str | None = None
    classes: List[str] = Field(default_factory=list)
    disabled: bool = False
    config: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class DisplayConfig(BaseModel):
    positions: List[str] = Field(
        default_factory=lambda: list(DEFAULT_POSITIONS)
    )
    # seconds; 0 -> immediate replace
    default_transition_s: float = Field(0.0, ge=0.0)

    model_config = ConfigDict(extra="forbid")


class ResourcesConfig(BaseModel):
    modules_dir: str = "modules"
    fallback_language: str = "en"

    model_config = ConfigDict(extra="forbid")
