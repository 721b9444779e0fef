"""
Base technology.

A technology knows how to create the source file of one entity and how to
build a bundle for a declaration. Subclasses usually only override the
``get_*`` content hooks; the file I/O goes through :mod:`bemkit.fs`.
"""

import inspect
import logging
import os
from typing import Any, Dict, List, Mapping, Sequence

from bemkit import fs, naming

logger = logging.getLogger(__name__)


async def _resolved(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class Tech:
    """
    Base class for technology modules.

    Attributes:
        suffixes: File suffixes produced by the technology; defaults to
            ``.<name>``.
    """

    suffixes: Sequence[str] = ()

    def __init__(self, name: str, path: str, context: Any = None):
        self.name = name
        self.path = path
        self.context = context

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, {self.path!r})"

    def get_suffixes(self) -> List[str]:
        return list(self.suffixes) or [f".{self.name}"]

    # ------------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------------

    def get_create_result(self, path: str, suffix: str, entity: Mapping[str, str]) -> Any:
        """Content of a newly created entity file (may be awaitable)."""
        return ""

    async def create_by_decl(self, entity: Mapping[str, Any], level: Any, opts: Dict[str, Any]) -> List[str]:
        """
        Create the files of one entity on ``level``.

        Returns:
            Paths of the written files
        """
        entity = naming.normalize_entity(entity)
        prefix = level.get_path_by_obj(entity)
        written = []
        for suffix in self.get_suffixes():
            path = prefix + suffix
            content = await _resolved(self.get_create_result(path, suffix, entity))
            await fs.write(path, content)
            written.append(path)
        logger.debug(f"{self.name}: created {written}")
        return written

    # ------------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------------

    def get_build_result_chunk(self, rel_path: str, path: str, suffix: str) -> str:
        """Bundle fragment for one source file; a comment naming it by default."""
        return f"/* {rel_path} */\n"

    async def get_build_result(self, files: List[str], output: str, suffix: str) -> str:
        output_dir = os.path.dirname(output)
        chunks = [
            self.get_build_result_chunk(os.path.relpath(path, output_dir), path, suffix)
            for path in files
        ]
        return "".join(chunks)

    async def build_by_decl(self, decl: Any, levels: Sequence[Any], output: str, opts: Dict[str, Any]) -> List[str]:
        """
        Build bundle files ``<output><suffix>`` for every suffix.

        Args:
            decl: Declaration (or awaitable resolving to one)
            levels: Levels searched in order for entity files
            output: Output path prefix
            opts: Build options

        Returns:
            Paths of the written bundles
        """
        entities = naming.parse_declaration(await _resolved(decl))
        output = os.path.abspath(output)
        written = []
        for suffix in self.get_suffixes():
            files: List[str] = []
            for entity in entities:
                for level in levels:
                    files.extend(level.match_entity_files(entity, suffix))
            path = output + suffix
            await fs.write(path, await self.get_build_result(files, path, suffix))
            written.append(path)
        logger.debug(f"{self.name}: built {written} from {len(entities)} entities")
        return written
