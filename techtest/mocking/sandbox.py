"""
Module sandbox for loading technology code with substituted dependencies.

A :class:`ModuleSandbox` executes modules with a private ``__builtins__``
whose ``__import__`` consults a substitution table before resolving
anything. Every module imported from sandboxed code is itself executed in
the sandbox (so substitutions apply transitively), except:

- identifiers in the substitution table, which yield the substitute;
- identifiers in the passthrough list, which import normally;
- built-in, frozen, extension and standard-library modules, which import
  normally, except standard-library modules listed as ``sandboxed`` (such
  as ``shutil``) whose own ``os``/``open`` lookups must reach the
  substitutes.

Sandboxed modules are cached per sandbox and never registered in
``sys.modules``; the real ``builtins`` module is never touched (``import
builtins`` yields a view carrying the overrides). Two sandboxes therefore
never see each other's substitutions.
"""

import builtins
import importlib
import importlib.machinery
import importlib.util
import logging
import os
import sys
import sysconfig
import types
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from techtest.core.exceptions import ReservedModuleError

logger = logging.getLogger(__name__)


def _stdlib_dirs() -> List[str]:
    paths = sysconfig.get_paths()
    dirs = {paths.get("stdlib"), paths.get("platstdlib")}
    return [os.path.realpath(d) for d in dirs if d]


_STDLIB_DIRS = _stdlib_dirs()
_SITE_MARKERS = ("site-packages", "dist-packages")


def is_path_target(target: str) -> bool:
    """Tell filesystem targets (``/a/b/tech.py``) apart from dotted module names."""
    return target.endswith(".py") or os.sep in target or "/" in target


class _ModuleOverlay(types.ModuleType):
    """
    Module view that replaces selected attributes of a module that cannot be
    mutated (a real module shared with the rest of the process).
    """

    def __init__(self, base: Any, overrides: Mapping[str, Any]):
        super().__init__(getattr(base, "__name__", "overlay"))
        self.__dict__["_overlay_base"] = base
        self.__dict__.update(overrides)

    def __getattr__(self, name: str) -> Any:
        return getattr(self.__dict__["_overlay_base"], name)


class ModuleSandbox:
    """
    Load modules with a substitution table applied to their imports.

    Example:
        sandbox = ModuleSandbox(
            mocks={"os": os_view, "bemkit.fs": async_view},
            resolves={"bemkit.techs.css": "/stubs/css.py"},
            passthrough=["techtest", "yaml"],
            builtins_overrides={"open": vfs_open},
        )
        tech_module = sandbox.load("/abs/path/to/my_tech.py")
        sandbox.resolve("bemkit.techs.css")  # '/stubs/css.py'
    """

    def __init__(
        self,
        mocks: Optional[Mapping[str, Any]] = None,
        resolves: Optional[Mapping[str, str]] = None,
        passthrough: Iterable[str] = (),
        sandboxed: Iterable[str] = (),
        builtins_overrides: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """
        Initialize sandbox.

        Args:
            mocks: Module identifier -> substitute object
            resolves: Module identifier -> path returned by :meth:`resolve`
            passthrough: Identifiers (and their sub-modules) imported normally
            sandboxed: Standard-library modules executed in the sandbox anyway
            builtins_overrides: Extra builtins for sandboxed code (e.g. ``open``)
        """
        self.mocks: Dict[str, Any] = dict(mocks or {})
        self.resolves: Dict[str, str] = dict(resolves or {})
        self.passthrough = tuple(passthrough)
        self.sandboxed = tuple(sandboxed)
        self._modules: Dict[str, types.ModuleType] = {}
        self._files: Dict[str, types.ModuleType] = {}
        self._search_paths: List[str] = []

        self._builtins = dict(vars(builtins))
        self._builtins.update(builtins_overrides or {})
        self._builtins["__import__"] = self._import_hook
        # "import builtins" must see the same overrides as the bare names
        self._builtins_module = _ModuleOverlay(
            builtins,
            {name: self._builtins[name] for name in [*(builtins_overrides or {}), "__import__"]},
        )

    # ========================================================================
    # Public API
    # ========================================================================

    @staticmethod
    def check_reserved(module_ids: Iterable[str], reserved: Sequence[str]) -> None:
        """
        Reject substitutions for identifiers the harness manages itself.

        Raises:
            ReservedModuleError: If any identifier is reserved
        """
        clashes = [module_id for module_id in module_ids if module_id in reserved]
        if clashes:
            raise ReservedModuleError(clashes, reserved)

    def load(self, target: str) -> types.ModuleType:
        """
        Load a module inside the sandbox.

        The target itself is always sandboxed, even when it matches the
        passthrough list. Loading the same target twice returns the same
        module object.

        Args:
            target: Dotted module name or path to a ``.py`` file

        Returns:
            The sandboxed module

        Raises:
            ModuleNotFoundError: If the target cannot be found
        """
        if is_path_target(target):
            return self._load_file(target)
        return self._import(target, force=True)

    def resolve(self, module_id: str) -> str:
        """
        Resolve a module identifier to a path without loading it.

        Redirects registered in ``resolves`` win; they never affect loading.

        Raises:
            ModuleNotFoundError: If the module cannot be located
        """
        if module_id in self.resolves:
            return self.resolves[module_id]
        if is_path_target(module_id):
            return os.path.abspath(module_id)

        spec = self._locate(module_id)
        if spec is None or not spec.origin:
            raise ModuleNotFoundError(f"No module named {module_id!r}", name=module_id)
        return spec.origin

    @property
    def loaded_modules(self) -> List[str]:
        """Names of modules executed in this sandbox so far."""
        return sorted(self._modules)

    # ========================================================================
    # Import Hook
    # ========================================================================

    def _import_hook(self, name, globals=None, locals=None, fromlist=(), level=0):
        if level > 0:
            package = self._package_of(globals or {})
            name = importlib.util.resolve_name("." * level + name, package)

        module = self._import(name)

        if fromlist:
            return self._apply_fromlist(name, module, fromlist)
        if level > 0 or "." not in name:
            return module
        return self._bound_top_level(name)

    @staticmethod
    def _package_of(module_globals: Mapping[str, Any]) -> str:
        package = module_globals.get("__package__")
        if package is None:
            module_name = module_globals.get("__name__", "")
            package = module_name if "__path__" in module_globals else module_name.rpartition(".")[0]
        return package

    def _apply_fromlist(self, name: str, module: Any, fromlist: Sequence[str]) -> Any:
        overrides: Dict[str, Any] = {}
        search = getattr(module, "__path__", None)

        for item in fromlist:
            if item == "*":
                continue
            full = f"{name}.{item}"
            if full in self.mocks:
                overrides[item] = self.mocks[full]
                continue
            if search is None or name in self.mocks:
                continue
            if full not in self._modules and item in getattr(module, "__dict__", {}):
                if not isinstance(module.__dict__[item], types.ModuleType) or name not in self._modules:
                    continue
            try:
                submodule = self._import(full)
            except ModuleNotFoundError as e:
                if e.name == full:
                    # Not a submodule; Python reports the missing name itself
                    continue
                raise
            if getattr(module, item, None) is not submodule:
                overrides[item] = submodule

        if not overrides:
            return module
        if name in self._modules:
            for key, value in overrides.items():
                setattr(module, key, value)
            return module
        return _ModuleOverlay(module, overrides)

    def _bound_top_level(self, name: str) -> Any:
        # "import a.b.c" binds "a"; every hop must lead to the sandboxed leaf
        parts = name.split(".")
        bound = self._import(name)
        for index in range(len(parts) - 1, 0, -1):
            parent_name = ".".join(parts[:index])
            parent = self._import(parent_name)
            if getattr(parent, parts[index], None) is not bound:
                parent = _ModuleOverlay(parent, {parts[index]: bound})
            bound = parent
        return bound

    # ========================================================================
    # Loading
    # ========================================================================

    def _is_passthrough(self, name: str) -> bool:
        return any(name == entry or name.startswith(entry + ".") for entry in self.passthrough)

    @staticmethod
    def _is_sandboxable(spec: importlib.machinery.ModuleSpec) -> bool:
        if not isinstance(spec.loader, importlib.machinery.SourceFileLoader):
            return False
        origin = os.path.realpath(spec.origin or "")
        if any(marker in origin for marker in _SITE_MARKERS):
            return True
        return not any(origin.startswith(stdlib + os.sep) for stdlib in _STDLIB_DIRS)

    def _import(self, name: str, force: bool = False) -> Any:
        if name in self.mocks:
            return self.mocks[name]
        if name in self._modules:
            return self._modules[name]
        if name == "builtins":
            return self._builtins_module
        if not force and self._is_passthrough(name):
            return importlib.import_module(name)

        parent_name = name.rpartition(".")[0]
        if parent_name:
            parent = self._import(parent_name)
            # the parent's __init__ may have imported us already
            if name in self._modules:
                return self._modules[name]
            if parent_name in self.mocks:
                raise ModuleNotFoundError(
                    f"No module named {name!r} ({parent_name!r} is mocked)", name=name
                )
            if parent_name not in self._modules and not force:
                return importlib.import_module(name)
            search = getattr(parent, "__path__", None)
            spec = importlib.machinery.PathFinder.find_spec(name, search) if search is not None else None
        else:
            spec = self._find_top_level(name)

        if spec is None:
            raise ModuleNotFoundError(f"No module named {name!r}", name=name)
        if not force and name not in self.sandboxed and not self._is_sandboxable(spec):
            return importlib.import_module(name)
        return self._execute(name, spec)

    def _find_top_level(self, name: str) -> Optional[importlib.machinery.ModuleSpec]:
        spec = None
        if self._search_paths:
            spec = importlib.machinery.PathFinder.find_spec(name, self._search_paths)
        if spec is None:
            try:
                spec = importlib.util.find_spec(name)
            except ValueError:
                spec = None
        return spec

    def _locate(self, name: str) -> Optional[importlib.machinery.ModuleSpec]:
        parts = name.split(".")
        spec = self._find_top_level(parts[0])
        for index in range(1, len(parts)):
            if spec is None or spec.submodule_search_locations is None:
                return None
            spec = importlib.machinery.PathFinder.find_spec(
                ".".join(parts[: index + 1]), spec.submodule_search_locations
            )
        return spec

    def _execute(self, name: str, spec: importlib.machinery.ModuleSpec) -> types.ModuleType:
        module = importlib.util.module_from_spec(spec)
        module.__builtins__ = self._builtins
        self._modules[name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            del self._modules[name]
            raise

        parent_name, _, child = name.rpartition(".")
        if parent_name in self._modules:
            setattr(self._modules[parent_name], child, module)

        logger.debug(f"Sandboxed module {name} from {spec.origin}")
        return module

    def _load_file(self, path: str) -> types.ModuleType:
        path = os.path.abspath(path)
        if path in self._files:
            return self._files[path]

        dotted = self._dotted_name_for(path)
        if dotted is not None:
            module = self._import(dotted, force=True)
        else:
            directory = os.path.dirname(path)
            if directory not in self._search_paths:
                self._search_paths.insert(0, directory)
            name = os.path.splitext(os.path.basename(path))[0]
            spec = importlib.util.spec_from_file_location(name, path)
            if spec is None or not os.path.isfile(path):
                raise ModuleNotFoundError(f"No module file at {path}", name=name)
            if name in self._modules and getattr(self._modules[name], "__file__", None) == path:
                module = self._modules[name]
            else:
                module = self._execute(name, spec)

        self._files[path] = module
        return module

    @staticmethod
    def _dotted_name_for(path: str) -> Optional[str]:
        """Dotted name of a file living in an importable package, else ``None``."""
        directory = os.path.dirname(path)
        parts = [os.path.splitext(os.path.basename(path))[0]]
        while os.path.isfile(os.path.join(directory, "__init__.py")):
            parts.insert(0, os.path.basename(directory))
            directory = os.path.dirname(directory)

        if len(parts) == 1:
            return None

        top_dir = os.path.join(directory, parts[0])
        try:
            spec = importlib.util.find_spec(parts[0])
        except (ImportError, ValueError):
            return None
        locations = (spec.submodule_search_locations or []) if spec else []
        if os.path.realpath(top_dir) not in [os.path.realpath(p) for p in locations]:
            return None
        if parts[-1] == "__init__":
            parts.pop()
        return ".".join(parts)


__all__ = ["ModuleSandbox", "is_path_target"]
