# Copyright (c) Syntropy Systems
"""Scenario definitions and catalog loading."""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, cast

import yaml
from pydantic import Field, TypeAdapter, ValidationError, field_validator

from .base import FrozenModel

if TYPE_CHECKING:
    from pathlib import Path

TAG_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class Scenario(FrozenModel):
    """One named test unit defined by a natural-language prompt template."""

    tag: str
    description: str = ""
    prompt: str = Field(alias="promptTemplate")

    @field_validator("tag")
    @classmethod
    def _tag_is_file_safe(cls, value: str) -> str:
        if not value.strip():
            msg = "Scenario tag cannot be empty"
            raise ValueError(msg)
        if not TAG_PATTERN.match(value):
            msg = (
                f"Scenario tag {value!r} contains invalid characters; "
                "use only letters, numbers, underscores, and hyphens"
            )
            raise ValueError(msg)
        return value


_SCENARIO_LIST_ADAPTER = TypeAdapter(list[Scenario])


class CatalogError(ValueError):
    """The scenario catalog could not be loaded."""


def parse_catalog(
    data: object,
    allow_duplicates: bool = False,
) -> list[Scenario]:
    """Validate raw catalog data into scenarios, keeping file order.

    Duplicate tags are rejected unless ``allow_duplicates`` is set, in
    which case every entry is kept and run.
    """
    if not isinstance(data, list):
        msg = "Scenario catalog must be a list of {tag, description, prompt} records"
        raise CatalogError(msg)

    try:
        scenarios = _SCENARIO_LIST_ADAPTER.validate_python(data)
    except ValidationError as e:
        msg = f"Invalid scenario catalog: {e}"
        raise CatalogError(msg) from e

    if not allow_duplicates:
        seen: set[str] = set()
        duplicates: list[str] = []
        for scenario in scenarios:
            if scenario.tag in seen and scenario.tag not in duplicates:
                duplicates.append(scenario.tag)
            seen.add(scenario.tag)
        if duplicates:
            msg = f"Duplicate scenario tags: {', '.join(duplicates)}"
            raise CatalogError(msg)

    return scenarios


def load_catalog(path: Path, allow_duplicates: bool = False) -> list[Scenario]:
    """Load scenarios from a JSON or YAML file."""
    try:
        with path.open() as f:
            if path.suffix in (".yaml", ".yml"):
                data = cast("object", yaml.safe_load(f))
            else:
                data = cast("object", json.load(f))
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        msg = f"Could not parse {path}: {e}"
        raise CatalogError(msg) from e

    if data is None:
        data = []
    return parse_catalog(data, allow_duplicates=allow_duplicates)
