"""
Levels: directories holding entity sources and declaring their technologies.

A level is discovered the conventional way: its project root is the closest
proper ancestor containing a ``.bem`` directory, and its technologies are
the ``*.py`` modules in ``<level>/.bem/techs``.
"""

import logging
import os
from typing import Dict, List, Mapping, Any, Optional, Protocol, runtime_checkable

from bemkit import naming

logger = logging.getLogger(__name__)

CONFIG_DIR = ".bem"
TECHS_DIR = os.path.join(CONFIG_DIR, "techs")


@runtime_checkable
class Level(Protocol):
    """Capabilities the context and technologies rely on."""

    path: str
    project_root: str

    def get_techs(self) -> Dict[str, str]:
        ...

    def resolve_tech(self, name: str) -> Optional[str]:
        ...

    def get_path_by_obj(self, entity: Mapping[str, Any]) -> str:
        ...

    def get_rel_path_by_obj(self, entity: Mapping[str, Any]) -> str:
        ...

    def match_entity_files(self, entity: Mapping[str, Any], suffix: str) -> List[str]:
        ...

    def list_files(self) -> List[str]:
        ...


def find_project_root(path: str) -> str:
    """
    Closest proper ancestor of ``path`` containing a ``.bem`` directory, else ``/``.

    The level's own ``.bem`` holds its technologies, so the search starts
    at the level's parent.
    """
    current = os.path.dirname(os.path.abspath(path))
    while True:
        if os.path.isdir(os.path.join(current, CONFIG_DIR)):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            return os.sep
        current = parent


def scan_techs(level_path: str) -> Dict[str, str]:
    """Technology modules declared in ``<level>/.bem/techs``."""
    techs_dir = os.path.join(level_path, TECHS_DIR)
    if not os.path.isdir(techs_dir):
        return {}
    return {
        os.path.splitext(name)[0]: os.path.join(techs_dir, name)
        for name in sorted(os.listdir(techs_dir))
        if name.endswith(".py") and not name.startswith("_")
    }


class GenericLevel:
    """
    Level discovered from the filesystem.

    Example:
        level = GenericLevel("/project/blocks")
        level.project_root                      # '/project' if /project/.bem exists
        level.get_path_by_obj({"block": "menu"}) # '/project/blocks/menu/menu'
    """

    def __init__(self, path: str, project_root: Optional[str] = None):
        self.path = os.path.abspath(path)
        self.project_root = project_root or find_project_root(self.path)
        self._techs: Optional[Dict[str, str]] = None

    def __repr__(self) -> str:
        return f"GenericLevel({self.path!r})"

    def get_techs(self) -> Dict[str, str]:
        if self._techs is None:
            self._techs = scan_techs(self.path)
            logger.debug(f"Level {self.path} declares techs: {sorted(self._techs)}")
        return self._techs

    def resolve_tech(self, name: str) -> Optional[str]:
        return self.get_techs().get(name)

    def get_path_by_obj(self, entity: Mapping[str, Any]) -> str:
        return naming.get_path_by_obj(self.path, entity)

    def get_rel_path_by_obj(self, entity: Mapping[str, Any]) -> str:
        return naming.get_rel_path_by_obj(entity)

    def match_entity_files(self, entity: Mapping[str, Any], suffix: str) -> List[str]:
        return naming.match_entity_files(self.path, entity, suffix)

    def list_files(self) -> List[str]:
        return naming.list_level_files(self.path)
