"""Configuration for test sessions.

This module holds the harness defaults (reserved and passthrough module
identifiers) and the parser for YAML session fixtures:

    # menu.fixture.yaml
    sources:
      menu:
        menu.css: ".menu {}"
        __item:
          menu__item.css: ".menu__item {}"
    levels: [/]
    tech_map:
      base: ../techs/base.py     # relative to the fixture file
    mocked_resolves:
      bemkit.techs.css: /stubs/css.py
    passthrough: [requests]
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from techtest.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Identifiers bound to views of the virtual filesystem in every sandbox
RESERVED_MODULES: Tuple[str, ...] = (
    "os",
    "os.path",
    "posixpath",
    "io",
    "codecs",
    "builtins",
    "pathlib",
    "bemkit.fs",
)

# Standard-library modules executed inside the sandbox so their own os/open
# lookups resolve to the views
SANDBOXED_STDLIB: Tuple[str, ...] = ("shutil", "glob")

# Imported normally even from sandboxed code
DEFAULT_PASSTHROUGH: Tuple[str, ...] = (
    "techtest",
    "bemkit.exceptions",
    "yaml",
    "_yaml",
    "pytest",
    "_pytest",
    "pluggy",
)

FIXTURE_KEYS = ("sources", "levels", "tech_map", "mocked_resolves", "passthrough")


@dataclass
class TechTestConfig:
    """Harness settings shared by sessions."""

    reserved_modules: Tuple[str, ...] = RESERVED_MODULES
    sandboxed_stdlib: Tuple[str, ...] = SANDBOXED_STDLIB
    passthrough_modules: List[str] = field(default_factory=lambda: list(DEFAULT_PASSTHROUGH))
    project_root: str = "/"
    default_levels: List[str] = field(default_factory=lambda: ["/"])
    context_module: str = "bemkit.context"
    stub_level_module: str = "techtest.stub_level"


@dataclass
class SessionFixture:
    """Session setup loaded from a YAML fixture file."""

    sources: Optional[Dict[str, Any]] = None
    levels: Optional[List[str]] = None
    tech_map: Dict[str, str] = field(default_factory=dict)
    mocked_resolves: Dict[str, str] = field(default_factory=dict)
    passthrough: List[str] = field(default_factory=list)


def load_fixture(fixture_path: Union[str, Path]) -> SessionFixture:
    """
    Parse a YAML session fixture.

    Relative ``.py`` paths in ``tech_map`` are resolved against the fixture
    file's directory.

    Args:
        fixture_path: Path to the fixture file

    Returns:
        Parsed fixture

    Raises:
        ConfigurationError: If the file is missing, not valid YAML, or has
            unknown keys or wrongly typed values
    """
    fixture_path = Path(fixture_path)
    if not fixture_path.exists():
        raise ConfigurationError(f"Fixture file not found: {fixture_path}")

    try:
        with open(fixture_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML syntax in {fixture_path}: {e}")

    if data is None:
        return SessionFixture()
    if not isinstance(data, dict):
        raise ConfigurationError(f"Fixture {fixture_path} must be a mapping")

    fixture = _parse_fixture(data, fixture_path.parent)
    logger.debug(f"Loaded fixture {fixture_path}")
    return fixture


def _parse_fixture(data: dict, base_dir: Path) -> SessionFixture:
    unknown = sorted(set(data) - set(FIXTURE_KEYS))
    if unknown:
        raise ConfigurationError(f"Unknown fixture keys: {', '.join(unknown)}")

    sources = data.get("sources")
    if sources is not None and not isinstance(sources, dict):
        raise ConfigurationError("'sources' must be a mapping")

    levels = data.get("levels")
    if levels is not None:
        if isinstance(levels, str):
            levels = [levels]
        if not isinstance(levels, list) or not all(isinstance(p, str) for p in levels):
            raise ConfigurationError("'levels' must be a path or a list of paths")

    tech_map = _string_mapping(data, "tech_map")
    for name, module_path in tech_map.items():
        if module_path.endswith(".py") and not os.path.isabs(module_path):
            tech_map[name] = str((base_dir / module_path).resolve())

    passthrough = data.get("passthrough") or []
    if not isinstance(passthrough, list) or not all(isinstance(p, str) for p in passthrough):
        raise ConfigurationError("'passthrough' must be a list of module names")

    return SessionFixture(
        sources=sources,
        levels=levels,
        tech_map=tech_map,
        mocked_resolves=_string_mapping(data, "mocked_resolves"),
        passthrough=passthrough,
    )


def _string_mapping(data: dict, key: str) -> Dict[str, str]:
    value = data.get(key) or {}
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise ConfigurationError(f"'{key}' must map names to strings")
    return dict(value)
