"""
Tests for the stub level.

The level is exercised both directly against the real filesystem and
loaded inside a sandbox where ``os`` is the virtual filesystem view.
"""

import pytest

from bemkit.level import Level
from techtest.config import DEFAULT_PASSTHROUGH
from techtest.core.facades import OsModuleView
from techtest.mocking import ModuleSandbox
from techtest.stub_level import PROJECT_ROOT, StubLevel


@pytest.fixture
def sandboxed_stub_level(vfs):
    """The stub_level module loaded with ``os`` bound to ``vfs``."""
    os_view = OsModuleView(vfs)
    sandbox = ModuleSandbox(
        mocks={"os": os_view, "os.path": os_view.path},
        passthrough=DEFAULT_PASSTHROUGH,
    )
    return sandbox.load("techtest.stub_level")


class TestStubLevel:
    """Test the fixed registry and pinned project root."""

    def test_project_root_pinned(self, tmp_path):
        level = StubLevel(str(tmp_path), {})

        assert level.project_root == PROJECT_ROOT == "/"
        assert level.path == str(tmp_path)

    def test_get_techs_returns_registry(self):
        registry = {"css": "/techs/css.py"}
        level = StubLevel("/", registry)

        assert level.get_techs() is registry
        assert level.resolve_tech("css") == "/techs/css.py"
        assert level.resolve_tech("js") is None

    def test_implements_level_protocol(self):
        assert isinstance(StubLevel("/", {}), Level)

    def test_entity_paths(self):
        level = StubLevel("/blocks", {})
        entity = {"block": "menu", "elem": "item", "modifierName": "theme", "modifierValue": "dark"}

        assert level.get_rel_path_by_obj({"block": "menu"}) == "menu/menu"
        assert level.get_path_by_obj(entity) == "/blocks/menu/__item/_theme/menu__item_theme_dark"


class TestSandboxedStubLevel:
    """Test the stub level operating on the virtual filesystem."""

    def test_loaded_copy_is_distinct(self, sandboxed_stub_level):
        assert sandboxed_stub_level.StubLevel is not StubLevel

    def test_match_entity_files(self, sandboxed_stub_level):
        level = sandboxed_stub_level.StubLevel("/", {})

        assert level.match_entity_files({"block": "menu"}, ".css") == ["/menu/menu.css"]
        assert level.match_entity_files({"block": "menu", "elem": "item"}, ".css") == [
            "/menu/__item/menu__item.css"
        ]
        assert level.match_entity_files({"block": "menu"}, ".js") == []

    def test_list_files(self, sandboxed_stub_level, vfs):
        vfs.write("/.bem/level.py", "")
        level = sandboxed_stub_level.StubLevel("/", {})

        assert level.list_files() == [
            "/logo.png",
            "/menu/menu.css",
            "/menu/__item/menu__item.css",
        ]

    def test_relative_level_path(self, sandboxed_stub_level):
        assert sandboxed_stub_level.StubLevel("blocks", {}).path == "/blocks"
