"""
Tests for the module sandbox.
"""

import builtins
import json
import os
import sys
import textwrap
from types import SimpleNamespace

import pytest

from techtest.core.exceptions import ConfigurationError, ReservedModuleError
from techtest.mocking import ModuleSandbox, is_path_target


@pytest.fixture
def write_module(tmp_path):
    """Factory writing a standalone module and returning its path."""
    directory = tmp_path / "standalone"
    directory.mkdir()

    def _write(name: str, code: str) -> str:
        path = directory / f"{name}.py"
        path.write_text(textwrap.dedent(code), encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def fake_os():
    fake_path = SimpleNamespace(exists=lambda path: path == "/virtual/file")
    return SimpleNamespace(getcwd=lambda: "/virtual", path=fake_path)


# ============================================================================
# Targets
# ============================================================================


class TestTargets:
    """Test telling paths apart from module names."""

    @pytest.mark.parametrize("target", ["/abs/tech.py", "rel/tech", "tech.py"])
    def test_path_targets(self, target):
        assert is_path_target(target)

    @pytest.mark.parametrize("target", ["bemkit.techs.css", "css"])
    def test_module_names(self, target):
        assert not is_path_target(target)


# ============================================================================
# Substitution
# ============================================================================


class TestSubstitution:
    """Test that imports inside sandboxed code yield substitutes."""

    def test_import_statement(self, write_module, fake_os):
        path = write_module("uses_os", "import os\ncwd = os.getcwd()\n")

        module = ModuleSandbox(mocks={"os": fake_os}).load(path)

        assert module.cwd == "/virtual"

    def test_dotted_import_binds_substitute_parent(self, write_module, fake_os):
        path = write_module("uses_os_path", "import os.path\nfound = os.path.exists('/virtual/file')\n")

        module = ModuleSandbox(mocks={"os": fake_os, "os.path": fake_os.path}).load(path)

        assert module.found is True

    def test_from_import_of_submodule(self, write_module, fake_os):
        path = write_module("from_os", "from os import path\n")

        module = ModuleSandbox(mocks={"os": fake_os, "os.path": fake_os.path}).load(path)

        assert module.path is fake_os.path

    def test_from_import_of_mocked_submodule_of_package(self, write_module):
        fake_fs = SimpleNamespace(kind="fake")
        path = write_module("from_bemkit", "from bemkit import fs, naming\n")

        module = ModuleSandbox(mocks={"bemkit.fs": fake_fs}).load(path)

        assert module.fs is fake_fs
        assert hasattr(module.naming, "build_entity_name")

    def test_substitution_is_transitive(self, create_package, fake_os):
        create_package(
            "sbx_transitive",
            {
                "reader.py": """
                    import os

                    def cwd():
                        return os.getcwd()
                """,
                "main.py": """
                    from . import reader
                    from .reader import cwd

                    value = reader.cwd()
                    direct = cwd()
                """,
            },
        )

        module = ModuleSandbox(mocks={"os": fake_os}).load("sbx_transitive.main")

        assert module.value == "/virtual"
        assert module.direct == "/virtual"

    def test_sibling_of_standalone_module(self, write_module, fake_os):
        write_module("helper", "import os\nWHERE = os.getcwd()\n")
        path = write_module("uses_helper", "import helper\nwhere = helper.WHERE\n")

        module = ModuleSandbox(mocks={"os": fake_os}).load(path)

        assert module.where == "/virtual"

    def test_builtins_override(self, write_module):
        path = write_module("uses_open", "data = open('/any').read()\n")
        fake_open = lambda *args, **kwargs: SimpleNamespace(read=lambda: "virtual data")

        module = ModuleSandbox(builtins_overrides={"open": fake_open}).load(path)

        assert module.data == "virtual data"
        assert builtins.open is not fake_open

    def test_builtins_module_carries_overrides(self, write_module):
        path = write_module(
            "uses_builtins_module",
            "import builtins\nfrom builtins import open as imported_open\n"
            "data = builtins.open('/any').read()\n",
        )
        fake_open = lambda *args, **kwargs: SimpleNamespace(read=lambda: "virtual data")

        module = ModuleSandbox(builtins_overrides={"open": fake_open}).load(path)

        assert module.data == "virtual data"
        assert module.imported_open is fake_open
        assert module.builtins.len is len
        assert builtins.open is not fake_open

    def test_submodule_of_mocked_module(self, write_module):
        path = write_module("deep_import", "import fakepkg.sub\n")

        with pytest.raises(ModuleNotFoundError):
            ModuleSandbox(mocks={"fakepkg": SimpleNamespace()}).load(path)


# ============================================================================
# Real Imports
# ============================================================================


class TestRealImports:
    """Test modules that bypass the sandbox."""

    def test_stdlib_imported_normally(self, write_module):
        path = write_module("uses_json", "import json\n")

        module = ModuleSandbox().load(path)

        assert module.json is json

    def test_passthrough_imported_normally(self, write_module, create_package):
        create_package("sbx_shared", {"__init__.py": "STATE = []\n"})
        path = write_module("uses_shared", "import sbx_shared\n")

        module = ModuleSandbox(passthrough=["sbx_shared"]).load(path)

        assert module.sbx_shared is sys.modules["sbx_shared"]

    def test_other_packages_are_sandboxed(self, write_module, create_package):
        create_package("sbx_private", {"__init__.py": "STATE = []\n"})
        path = write_module("uses_private", "import sbx_private\n")

        sandbox = ModuleSandbox()
        module = sandbox.load(path)

        assert "sbx_private" not in sys.modules
        assert "sbx_private" in sandbox.loaded_modules
        assert module.sbx_private.STATE == []

    def test_explicit_target_sandboxed_even_if_passthrough(self, create_package, fake_os):
        create_package("sbx_forced", {"mod.py": "import os\ncwd = os.getcwd()\n"})

        sandbox = ModuleSandbox(mocks={"os": fake_os}, passthrough=["sbx_forced"])
        module = sandbox.load("sbx_forced.mod")

        assert module.cwd == "/virtual"
        assert "sbx_forced.mod" not in sys.modules

    def test_missing_module(self, write_module):
        path = write_module("imports_missing", "import sbx_does_not_exist\n")

        with pytest.raises(ModuleNotFoundError):
            ModuleSandbox().load(path)

    def test_missing_target(self, tmp_path):
        with pytest.raises(ModuleNotFoundError):
            ModuleSandbox().load(str(tmp_path / "nope.py"))


# ============================================================================
# Isolation and Caching
# ============================================================================


class TestIsolation:
    """Test that sandboxes do not leak into each other or the process."""

    def test_nothing_registered_in_sys_modules(self, write_module, fake_os):
        path = write_module("isolated", "import os\n")

        ModuleSandbox(mocks={"os": fake_os}).load(path)

        assert "isolated" not in sys.modules
        assert sys.modules["os"] is os

    def test_two_sandboxes_see_own_substitutes(self, write_module):
        path = write_module("per_sandbox", "import os\ncwd = os.getcwd()\n")

        first = ModuleSandbox(mocks={"os": SimpleNamespace(getcwd=lambda: "/one")}).load(path)
        second = ModuleSandbox(mocks={"os": SimpleNamespace(getcwd=lambda: "/two")}).load(path)

        assert first is not second
        assert (first.cwd, second.cwd) == ("/one", "/two")

    def test_load_is_cached(self, write_module):
        path = write_module("cached", "import itertools\nCOUNTER = itertools.count()\n")
        sandbox = ModuleSandbox()

        assert sandbox.load(path) is sandbox.load(path)

    def test_path_and_dotted_name_share_module(self, create_package):
        package_dir = create_package("sbx_same", {"mod.py": "VALUE = object()\n"})
        sandbox = ModuleSandbox()

        by_name = sandbox.load("sbx_same.mod")
        by_path = sandbox.load(str(package_dir / "mod.py"))

        assert by_name is by_path

    def test_failed_module_not_cached(self, write_module):
        path = write_module("broken", "raise RuntimeError('boom')\n")
        sandbox = ModuleSandbox()

        for _ in range(2):
            with pytest.raises(RuntimeError, match="boom"):
                sandbox.load(path)
        assert "broken" not in sandbox.loaded_modules


# ============================================================================
# Resolution
# ============================================================================


class TestResolve:
    """Test module path resolution."""

    def test_redirect_wins(self):
        sandbox = ModuleSandbox(resolves={"bemkit.techs.css": "/stubs/css.py"})

        assert sandbox.resolve("bemkit.techs.css") == "/stubs/css.py"
        assert sandbox.loaded_modules == []

    def test_redirect_does_not_affect_loading(self):
        sandbox = ModuleSandbox(resolves={"bemkit.techs.css": "/stubs/css.py"})

        module = sandbox.load("bemkit.techs.css")

        assert module.__file__.endswith(os.path.join("bemkit", "techs", "css.py"))

    def test_real_origin(self):
        origin = ModuleSandbox().resolve("bemkit.techs.css")
        assert origin.endswith(os.path.join("bemkit", "techs", "css.py"))

    def test_path_target(self, tmp_path):
        target = str(tmp_path / "tech.py")
        assert ModuleSandbox().resolve(target) == target

    def test_missing(self):
        with pytest.raises(ModuleNotFoundError):
            ModuleSandbox().resolve("bemkit.techs.does_not_exist")


# ============================================================================
# Reserved Identifiers
# ============================================================================


class TestReserved:
    """Test rejection of harness-managed identifiers."""

    @pytest.mark.parametrize("module_id", ["os", "os.path", "bemkit.fs"])
    def test_reserved_rejected(self, module_id):
        with pytest.raises(ReservedModuleError) as exc_info:
            ModuleSandbox.check_reserved({module_id: object()}, ("os", "os.path", "bemkit.fs"))

        assert exc_info.value.module_ids == [module_id]
        assert isinstance(exc_info.value, ConfigurationError)
        assert "with_source_files()" in str(exc_info.value)

    def test_other_identifiers_accepted(self):
        ModuleSandbox.check_reserved({"requests": object()}, ("os", "os.path", "bemkit.fs"))
