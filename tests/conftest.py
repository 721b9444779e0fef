"""
Pytest configuration and shared fixtures for techtest tests.
"""

import sys
import textwrap
from pathlib import Path

import pytest

from techtest.core.filesystem import VirtualFilesystem


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers",
        "e2e: end-to-end scenarios running real technology modules",
    )


# ============================================================================
# Shared Test Fixtures
# ============================================================================


@pytest.fixture
def source_tree():
    """Nested source description with two levels of directories."""
    return {
        "menu": {
            "menu.css": ".menu {}",
            "__item": {"menu__item.css": ".menu__item {}"},
        },
        "logo.png": b"\x89PNG",
    }


@pytest.fixture
def vfs(source_tree) -> VirtualFilesystem:
    """Virtual filesystem built from ``source_tree``."""
    return VirtualFilesystem(source_tree)


@pytest.fixture
def tech_dir(tmp_path) -> Path:
    """Directory for throw-away technology modules."""
    directory = tmp_path / "techs"
    directory.mkdir()
    return directory


@pytest.fixture
def create_tech_module(tech_dir):
    """
    Factory writing a technology module and returning its absolute path.

    Example:
        path = create_tech_module("ext", '''
            from bemkit.tech import Tech as BaseTech

            class Tech(BaseTech):
                suffixes = (".ext",)
        ''')
    """

    def _create(name: str, code: str) -> str:
        module_file = tech_dir / f"{name}.py"
        module_file.write_text(textwrap.dedent(code), encoding="utf-8")
        return str(module_file)

    return _create


@pytest.fixture
def create_package(tmp_path, monkeypatch):
    """
    Factory writing an importable package under ``tmp_path/pkgs``.

    ``files`` maps module paths relative to the package (``"__init__.py"``,
    ``"sub/mod.py"``) to source code. Packages created here are dropped from
    ``sys.modules`` after the test.
    """
    root = tmp_path / "pkgs"
    root.mkdir()
    monkeypatch.syspath_prepend(str(root))
    created = []

    def _create(package: str, files: dict) -> Path:
        package_dir = root / package
        package_dir.mkdir()
        files = {"__init__.py": "", **files}
        for relative, code in files.items():
            target = package_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(textwrap.dedent(code), encoding="utf-8")
        created.append(package)
        return package_dir

    yield _create

    for name in list(sys.modules):
        if any(name == p or name.startswith(p + ".") for p in created):
            del sys.modules[name]


@pytest.fixture
def ext_tech(create_tech_module) -> str:
    """Technology writing ``<level>/<block>.ext`` with the block name as content."""
    return create_tech_module(
        "ext",
        """
        import os

        from bemkit import fs
        from bemkit.tech import Tech as BaseTech


        class Tech(BaseTech):
            async def create_by_decl(self, entity, level, opts):
                path = os.path.join(level.path, entity["block"] + ".ext")
                await fs.write(path, entity["block"])
                return [path]
        """,
    )
