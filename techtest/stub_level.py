"""
Stub level used by technology tests.

Differences from :class:`bemkit.level.GenericLevel`:

- the project root is always ``/``;
- :meth:`StubLevel.get_techs` returns exactly the registry given at
  construction, nothing is discovered from the filesystem.

Everything else goes through the same :mod:`bemkit.naming` helpers the
generic level uses. The module is loaded inside the test sandbox, so those
helpers see the virtual filesystem.
"""

import os
from typing import Any, List, Mapping, Optional

from bemkit import naming

PROJECT_ROOT = "/"


class StubLevel:
    """
    Level with a pinned project root and a fixed technology registry.

    Args:
        path: Level directory inside the virtual filesystem
        tech_map: Technology name -> module path
    """

    def __init__(self, path: str, tech_map: Mapping[str, str]):
        self.path = os.path.abspath(path)
        self.project_root = PROJECT_ROOT
        self._tech_map = tech_map

    def __repr__(self) -> str:
        return f"StubLevel({self.path!r})"

    def get_techs(self) -> Mapping[str, str]:
        return self._tech_map

    def resolve_tech(self, name: str) -> Optional[str]:
        return self._tech_map.get(name)

    def get_path_by_obj(self, entity: Mapping[str, Any]) -> str:
        return naming.get_path_by_obj(self.path, entity)

    def get_rel_path_by_obj(self, entity: Mapping[str, Any]) -> str:
        return naming.get_rel_path_by_obj(entity)

    def match_entity_files(self, entity: Mapping[str, Any], suffix: str) -> List[str]:
        return naming.match_entity_files(self.path, entity, suffix)

    def list_files(self) -> List[str]:
        return naming.list_level_files(self.path)


__all__ = ["StubLevel", "PROJECT_ROOT"]
