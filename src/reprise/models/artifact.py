# Copyright (c) Syntropy Systems
"""Generated test artifacts."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import Field

from .base import FrozenModel
from .stats import utc_now


class Artifact(FrozenModel):
    """An executable test produced from a scenario prompt."""

    tag: str
    path: Path
    content: str = ""
    warnings: list[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utc_now)


class ArtifactMeta(FrozenModel):
    """Side-car metadata written next to a generated test file."""

    tag: str
    generated_at: str
    prompt: str
    lines: int
    size: int
    warnings: list[str] = Field(default_factory=list)
    source: Optional[str] = None
