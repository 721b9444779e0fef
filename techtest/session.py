"""
Fluent test session for technology modules.

A :class:`TechTest` collects setup (source files, levels, mocks), then
queues actions (``create``/``build``) and assertions on a
:class:`~techtest.chain.PendingChain`. Nothing runs until the chain is
drained with :meth:`TechTest.notify`, :meth:`TechTest.run` or by awaiting
the session.

Example:
    ```python
    def test_creates_block(done):
        (test_tech("/path/to/techs/ext.py")
            .create({"block": "x"})
            .produces_file("/x/x.ext")
            .with_content("x")
            .writes_to_file("/x/x.ext")
            .notify(done))

    async def test_builds_bundle():
        await (test_tech("css", CSS_TECH)
            .with_source_files({"menu": {"menu.css": ".a{}"}})
            .build("/page", {"deps": [{"block": "menu"}]})
            .produces_file("/page.css")
            .with_content("@import url(menu/menu.css);", ""))
    ```
"""

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from techtest.chain import PendingChain
from techtest.config import TechTestConfig, load_fixture
from techtest.core.exceptions import (
    NotFoundError,
    TechAssertionError,
    UsageError,
)
from techtest.core.facades import (
    AsyncFilesystem,
    CodecsModuleView,
    IoModuleView,
    OsModuleView,
    PathlibModuleView,
    make_open,
)
from techtest.core.filesystem import VirtualFilesystem, validate_source_tree
from techtest.mocking.sandbox import ModuleSandbox

logger = logging.getLogger(__name__)


def _reraise(error: BaseException) -> Callable[[], None]:
    def fail() -> None:
        raise error

    return fail


def _wants_filesystem(callback: Callable) -> bool:
    try:
        params = inspect.signature(callback).parameters.values()
    except (TypeError, ValueError):
        return False
    # Optional positionals keep their defaults
    return any(
        p.kind is p.VAR_POSITIONAL
        or (p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.default is p.empty)
        for p in params
    )


class TechTest:
    """
    Functional test helper for one technology module.

    Lifecycle: setup calls only mutate session state; the first action
    builds the virtual filesystem, the sandbox, the stub levels, the context
    and the technology (once); actions and assertions are queued; draining
    runs the queue. A session runs once.
    """

    def __init__(self, tech_name: str, module_path: str, config: Optional[TechTestConfig] = None):
        """
        Initialize session.

        Args:
            tech_name: Name of the technology under test
            module_path: Absolute ``.py`` path or dotted module name of the technology
            config: Harness settings (defaults to :class:`TechTestConfig`)
        """
        self._tech_name = tech_name
        self._module_path = module_path
        self._config = config or TechTestConfig()

        self._sources: Optional[Mapping[str, Any]] = None
        self._mocked_modules: Dict[str, Any] = {}
        self._mocked_resolves: Dict[str, str] = {}
        self._passthrough: List[str] = list(self._config.passthrough_modules)
        self._level_paths: Optional[List[str]] = None
        self._tech_map: Dict[str, str] = {}
        self._build_decl: Any = None

        self._chain = PendingChain()
        self._loaded = False
        self._vfs: Optional[VirtualFilesystem] = None
        self._fs: Optional[AsyncFilesystem] = None
        self._sandbox: Optional[ModuleSandbox] = None
        self._levels: List[Any] = []
        self._context: Any = None
        self._tech: Any = None
        self._task: Optional[asyncio.Task] = None

        self._last_file_name: Optional[str] = None
        self._test_start_time: Optional[float] = None

    def __repr__(self) -> str:
        return f"TechTest({self._tech_name!r}, {self._module_path!r})"

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def tech_name(self) -> str:
        return self._tech_name

    @property
    def vfs(self) -> VirtualFilesystem:
        """The session's virtual filesystem (built on first access)."""
        return self._filesystem()

    @property
    def tech(self) -> Any:
        """Technology instance, available after the first action."""
        return self._tech

    @property
    def levels(self) -> List[Any]:
        return list(self._levels)

    @property
    def sandbox(self) -> Optional[ModuleSandbox]:
        return self._sandbox

    # ========================================================================
    # Setup
    # ========================================================================

    def with_source_files(self, sources: Mapping[str, Any]) -> "TechTest":
        """
        Specify source files to use during the test.

        Each key is a node name. Mapping values become directories, ``str``
        or ``bytes`` values become files with that content.

        Raises:
            ConfigurationError: If the tree is malformed
        """
        validate_source_tree(sources)
        self._sources = sources
        return self

    def with_mocked_modules(self, modules: Mapping[str, Any]) -> "TechTest":
        """
        Specify substitutes for modules imported by the technology (merged
        with previous calls). Format is ``{"module.id": substitute}``.

        Raises:
            ReservedModuleError: For filesystem modules the harness already
                mocks; use :meth:`with_source_files` instead
        """
        ModuleSandbox.check_reserved(modules, self._config.reserved_modules)
        self._mocked_modules.update(modules)
        return self

    def with_mocked_modules_resolves(self, module_paths: Mapping[str, str]) -> "TechTest":
        """
        Specify paths returned when a module identifier is resolved (merged
        with previous calls). Format is ``{"module.id": "/stub/path.py"}``.
        """
        self._mocked_resolves.update(module_paths)
        return self

    def with_passthrough_modules(self, modules: List[str]) -> "TechTest":
        """Import these modules normally even from sandboxed code."""
        self._passthrough.extend(m for m in modules if m not in self._passthrough)
        return self

    def with_level(self, level: str) -> "TechTest":
        """Specify a single level path."""
        return self.with_levels([level])

    def with_levels(self, levels: List[str]) -> "TechTest":
        """Specify level paths; the first one is used by :meth:`create`."""
        self._level_paths = list(levels)
        return self

    def with_tech_map(self, tech_map: Mapping[str, str]) -> "TechTest":
        """
        Specify extra technologies as ``{name: module_path}`` so base
        technologies can be resolved by name. The technology under test
        always keeps its own entry.
        """
        self._tech_map.update(tech_map)
        return self

    def with_fixture(self, fixture_path: Union[str, Path]) -> "TechTest":
        """Apply setup from a YAML fixture file (see :mod:`techtest.config`)."""
        fixture = load_fixture(fixture_path)
        if fixture.sources is not None:
            self.with_source_files(fixture.sources)
        if fixture.levels is not None:
            self.with_levels(fixture.levels)
        self.with_tech_map(fixture.tech_map)
        self.with_mocked_modules_resolves(fixture.mocked_resolves)
        self.with_passthrough_modules(fixture.passthrough)
        return self

    def touch_file(self, path: str) -> "TechTest":
        """
        Update access and modification times of a file, after the actions
        queued so far and before the assertions queued later.
        """

        async def touch() -> None:
            fs = self._async_filesystem()
            if not await fs.is_file(path):
                raise NotFoundError(path)
            handle = await fs.open(path, "w+")
            await handle.close()

        self._chain.enqueue(f"touch {path}", touch)
        return self

    # ========================================================================
    # Actions
    # ========================================================================

    def create(self, entity: Mapping[str, Any]) -> "TechTest":
        """
        Create an entity with the technology on the first level.

        Args:
            entity: ``{"block": ..., "elem": ..., "mod": ..., "val": ...}``
                (``modifierName``/``modifierValue`` are accepted too)
        """
        self._chain.check_open()
        self._load()
        entity = dict(entity)

        def run() -> Any:
            self._test_start_time = self._filesystem().now()
            return self._tech.create_by_decl(entity, self._levels[0], {})

        self._chain.enqueue(f"create {entity}", run)
        return self

    def build(self, output: str, decl: Any) -> "TechTest":
        """
        Build a bundle with the technology from all levels.

        Args:
            output: Output path prefix; the technology appends its suffixes
            decl: Declaration (or awaitable), passed to the technology as is
        """
        self._chain.check_open()
        self._build_decl = decl
        self._load()
        if self._context is not None:
            self._context.declaration = decl

        def run() -> Any:
            self._test_start_time = self._filesystem().now()
            return self._tech.build_by_decl(decl, self._levels, output, {})

        self._chain.enqueue(f"build {output}", run)
        return self

    # ========================================================================
    # Assertions
    # ========================================================================

    def produces_file(self, path: str) -> "TechTest":
        """
        Check that the actions produced a file. Only existence is checked;
        follow up with :meth:`with_content` to check the content.
        """
        self._last_file_name = path

        async def check() -> None:
            if not await self._async_filesystem().exists(path):
                raise TechAssertionError(
                    f"expected tech to produce file {path}", path, "exists", "missing"
                )

        self._chain.enqueue(f"produces_file {path}", check)
        return self

    def with_content(self, content: str, *lines: str) -> "TechTest":
        """
        Check the content of the file named by the last :meth:`produces_file`.

        Several arguments are expected lines joined with ``"\\n"``; no
        trailing newline is added, pass ``""`` as the last line to expect one.

        Raises:
            UsageError: If no file was named with :meth:`produces_file`
        """
        if self._last_file_name is None:
            raise UsageError("with_content() must follow produces_file()")

        path = self._last_file_name
        expected = "\n".join((content,) + lines) if lines else content

        async def check() -> None:
            actual = await self._async_filesystem().read(path)
            if isinstance(actual, bytes) and isinstance(expected, str):
                matches = actual == expected.encode("utf-8")
                shown: Any = actual.decode("utf-8", errors="replace")
            else:
                matches = actual == expected
                shown = actual
            if not matches:
                raise TechAssertionError(
                    f"expected file {path} to have content", path, expected, shown
                )

        self._chain.enqueue(f"with_content {path}", check)
        return self

    def writes_to_file(self, path: str) -> "TechTest":
        """Check that the last action modified a file (content is not checked)."""

        async def check() -> None:
            start = self._require_start_time()
            modified = await self._async_filesystem().last_modified(path)
            if not modified > start:
                raise TechAssertionError(
                    f"Expected file {path} to be modified", path, f"> {start}", modified
                )

        self._chain.enqueue(f"writes_to_file {path}", check)
        return self

    def not_writes_to_file(self, path: str) -> "TechTest":
        """Check that the last action did not modify a file."""

        async def check() -> None:
            start = self._require_start_time()
            modified = await self._async_filesystem().last_modified(path)
            if not modified <= start:
                raise TechAssertionError(
                    f"Expected file {path} not to be modified", path, f"<= {start}", modified
                )

        self._chain.enqueue(f"not_writes_to_file {path}", check)
        return self

    # ========================================================================
    # Utility
    # ========================================================================

    def asserts(self, callback: Callable) -> "TechTest":
        """
        Run custom assertions after the preceding actions.

        The callback may be sync or async and may take the session's
        :class:`~techtest.core.facades.AsyncFilesystem` as its only required
        argument; a callback whose positional parameters all have defaults
        is called without one.
        Its exceptions propagate unchanged.
        """

        async def check() -> None:
            if _wants_filesystem(callback):
                result = callback(self._async_filesystem())
            else:
                result = callback()
            if inspect.isawaitable(result):
                await result

        self._chain.enqueue(f"asserts {getattr(callback, '__name__', callback)!r}", check)
        return self

    async def drain(self) -> None:
        """
        Run the queued operations.

        Raises:
            UsageError: If the session already ran
            Exception: The first failure, unchanged
        """
        try:
            await self._chain.drain()
        except Exception as e:
            logger.info(f"Tech test {self._tech_name} failed: {e}")
            raise
        logger.info(f"Tech test {self._tech_name} passed ({len(self._chain)} steps)")

    def __await__(self):
        return self.drain().__await__()

    def run(self) -> None:
        """Run the queued operations on a new event loop, raising the first failure."""
        asyncio.run(self.drain())

    def notify(self, done: Callable[[Optional[BaseException]], Any]) -> Optional[asyncio.Task]:
        """
        Run the queued operations and report to a completion callback.

        ``done`` is called exactly once: ``done(None)`` on success,
        ``done(error)`` with the first failure otherwise.

        An exception raised by ``done`` itself is logged and re-raised:
        from ``notify`` without a running loop, from the returned task
        inside one.

        Returns:
            Inside a running event loop, the scheduled task (await it to
            wait for ``done``); otherwise ``None``, after ``done`` was called.
        """

        if self._task is not None:
            return self._task

        async def report() -> None:
            error: Optional[BaseException] = None
            try:
                await self.drain()
            except Exception as e:
                error = e
            try:
                done(error)
            except Exception:
                logger.exception(f"Completion callback of tech test {self._tech_name} failed")
                raise

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            asyncio.run(report())
            return None
        self._task = loop.create_task(report())
        return self._task

    # ========================================================================
    # Materialization
    # ========================================================================

    def _filesystem(self) -> VirtualFilesystem:
        if self._vfs is None:
            self._vfs = VirtualFilesystem(self._sources or {})
            self._fs = AsyncFilesystem(self._vfs)
        return self._vfs

    def _async_filesystem(self) -> AsyncFilesystem:
        self._filesystem()
        return self._fs

    def _require_start_time(self) -> float:
        if self._test_start_time is None:
            raise UsageError("Modification checks need a preceding create() or build()")
        return self._test_start_time

    def _load(self) -> None:
        if self._loaded:
            return

        # Raised synchronously, before anything is built
        ModuleSandbox.check_reserved(self._mocked_modules, self._config.reserved_modules)
        vfs = self._filesystem()
        self._loaded = True

        try:
            self._sandbox = self._create_sandbox(vfs)
            self._load_levels()
            self._load_context()
            self._load_tech()
        except Exception as e:
            logger.debug(f"Materialization of {self._tech_name} failed: {e!r}")
            self._chain.enqueue("materialize", _reraise(e))

    def _create_sandbox(self, vfs: VirtualFilesystem) -> ModuleSandbox:
        os_view = OsModuleView(vfs)
        mocks = dict(self._mocked_modules)
        mocks.update(
            {
                "os": os_view,
                "os.path": os_view.path,
                "posixpath": os_view.path,
                "io": IoModuleView(vfs),
                "codecs": CodecsModuleView(vfs),
                "pathlib": PathlibModuleView(vfs),
                "bemkit.fs": self._fs,
            }
        )
        return ModuleSandbox(
            mocks=mocks,
            resolves=self._mocked_resolves,
            passthrough=self._passthrough,
            sandboxed=self._config.sandboxed_stdlib,
            builtins_overrides={"open": make_open(vfs)},
        )

    def _load_levels(self) -> None:
        stub_level = self._sandbox.load(self._config.stub_level_module)

        self._tech_map[self._tech_name] = self._module_path
        level_paths = self._level_paths or self._config.default_levels
        self._levels = [stub_level.StubLevel(path, self._tech_map) for path in level_paths]
        logger.debug(f"Stub levels: {level_paths}")

    def _load_context(self) -> None:
        context_module = self._sandbox.load(self._config.context_module)
        opts = {
            "root": self._config.project_root,
            "levels": self._levels,
            "declaration": self._build_decl,
            "tech_paths": list(self._tech_map.values()),
            "loader": self._sandbox.load,
            "resolve": self._sandbox.resolve,
        }
        self._context = context_module.Context(self._levels[0], opts)

    def _load_tech(self) -> None:
        self._tech = self._context.get_tech(self._tech_name)
        logger.debug(f"Loaded {self._tech!r} for testing")
