"""
Build context: binds levels, a declaration and technology modules together.

The context never imports technology modules on its own; it goes through an
injectable ``loader`` (module path -> module) and ``resolve`` (identifier
-> module path) pair. By default they use :mod:`importlib`, but a caller may
pass capabilities that load modules in an isolated namespace.
"""

import importlib
import importlib.util
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from bemkit.exceptions import TechLoadError, TechNotFoundError
from bemkit.tech import Tech

logger = logging.getLogger(__name__)

BUILTIN_TECHS_PACKAGE = "bemkit.techs"

Loader = Callable[[str], Any]
Resolver = Callable[[str], str]


def default_loader(target: str) -> Any:
    """Import a dotted module name or a ``.py`` file path."""
    if not target.endswith(".py"):
        return importlib.import_module(target)

    name = os.path.splitext(os.path.basename(target))[0]
    spec = importlib.util.spec_from_file_location(name, target)
    if spec is None:
        raise ModuleNotFoundError(f"No module file at {target}", name=name)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def default_resolve(module_id: str) -> str:
    spec = importlib.util.find_spec(module_id)
    if spec is None or not spec.origin:
        raise ModuleNotFoundError(f"No module named {module_id!r}", name=module_id)
    return spec.origin


class Context:
    """
    Technology registry bound to a level.

    Options:
        root: Project root directory
        levels: Ordered levels used by builds (defaults to ``[level]``)
        declaration: Declaration (or awaitable) shared with technologies
        tech_paths: Extra technology module paths, matched by file stem
        loader: Callable loading a module path (see :func:`default_loader`)
        resolve: Callable resolving an identifier (see :func:`default_resolve`)

    Example:
        context = Context(level, {"root": "/", "levels": [level]})
        css = context.get_tech("css")
        await css.create_by_decl({"block": "menu"}, level, {})
    """

    def __init__(self, level: Any, opts: Optional[Dict[str, Any]] = None):
        opts = opts or {}
        self.level = level
        self.root = opts.get("root") or getattr(level, "project_root", os.sep)
        self.levels: List[Any] = list(opts.get("levels") or [level])
        self.declaration = opts.get("declaration")
        self.tech_paths: List[str] = list(opts.get("tech_paths") or [])
        self._load: Loader = opts.get("loader") or default_loader
        self._resolve: Resolver = opts.get("resolve") or default_resolve
        self._techs: Dict[str, Tech] = {}

    def get_tech_path(self, name: str, exclude: Optional[str] = None) -> str:
        """
        Resolve a technology name to a module path.

        Order: the level's registry, ``tech_paths`` by file stem, then the
        built-in ``bemkit.techs.<name>`` module. ``exclude`` skips one path
        so a technology can extend a base technology of the same name.

        Raises:
            TechNotFoundError: If nothing matches
        """
        searched = []

        path = self.level.resolve_tech(name)
        searched.append(f"level {self.level.path}")
        if path and path != exclude:
            return path

        for candidate in self.tech_paths:
            stem = os.path.splitext(os.path.basename(candidate))[0]
            if stem == name and candidate != exclude:
                return candidate
        searched.append("tech_paths")

        builtin = f"{BUILTIN_TECHS_PACKAGE}.{name}"
        searched.append(builtin)
        try:
            path = self._resolve(builtin)
        except ModuleNotFoundError:
            path = None
        if path and path != exclude:
            return path

        raise TechNotFoundError(name, searched)

    def get_tech_class(self, name: str, path: Optional[str] = None) -> type:
        """
        Load the technology class for ``name``.

        A module defines either a ``Tech`` class, or a ``TechMixin`` class
        plus ``BASE_TECH_NAME``; the mixin is then combined with the base
        technology's class.

        Raises:
            TechNotFoundError: If the name (or its base) cannot be resolved
            TechLoadError: If the module defines no usable class
        """
        path = path or self.get_tech_path(name)
        module = self._load(path)

        tech_class = getattr(module, "Tech", None)
        if isinstance(tech_class, type):
            return tech_class

        mixin = getattr(module, "TechMixin", None)
        base_name = getattr(module, "BASE_TECH_NAME", None)
        if isinstance(mixin, type) and base_name:
            base_class = self.get_tech_class(base_name, self.get_tech_path(base_name, exclude=path))
            return type(f"{mixin.__name__}Tech", (mixin, base_class), {})
        if isinstance(mixin, type):
            return type(f"{mixin.__name__}Tech", (mixin, Tech), {})

        raise TechLoadError(name, path, "module defines neither 'Tech' nor 'TechMixin'")

    def get_tech(self, name: str) -> Tech:
        """Get (and cache) the technology instance bound to this context."""
        if name not in self._techs:
            path = self.get_tech_path(name)
            tech_class = self.get_tech_class(name, path)
            self._techs[name] = tech_class(name, path, self)
            logger.debug(f"Loaded tech {name} from {path}")
        return self._techs[name]
