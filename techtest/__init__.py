"""
techtest - functional tests for bemkit technology modules.

A test describes a virtual filesystem, the levels and the technology under
test, runs ``create`` or ``build`` and checks the resulting files:

    from techtest import test_tech

    async def test_css_build():
        await (test_tech("css", "bemkit.techs.css")
            .with_source_files({"menu": {"menu.css": ".menu {}"}})
            .build("/page", {"deps": [{"block": "menu"}]})
            .produces_file("/page.css")
            .with_content("@import url(menu/menu.css);", ""))

The technology runs inside a module sandbox where ``os``, ``os.path``, ``io``,
``codecs``, ``pathlib``, ``open`` (also as ``builtins.open``) and
``bemkit.fs`` all operate on the virtual filesystem.
"""

import os
from typing import Optional

from .config import TechTestConfig, load_fixture
from .core.exceptions import (
    ConfigurationError,
    FilesystemError,
    InvalidPathError,
    NotFoundError,
    ReservedModuleError,
    SandboxViolationError,
    TechAssertionError,
    TechTestError,
    UsageError,
)
from .session import TechTest

__version__ = "0.3.0"


def test_tech(
    tech_name_or_path: str,
    module_path: Optional[str] = None,
    config: Optional[TechTestConfig] = None,
) -> TechTest:
    """
    Create a test session for a technology module.

    Args:
        tech_name_or_path: Technology name, or the module path when
            ``module_path`` is omitted
        module_path: Absolute ``.py`` path or dotted module name
        config: Harness settings

    Returns:
        A new :class:`TechTest`

    Example:
        test_tech("/abs/techs/ext.py")       # name "ext"
        test_tech("css", "bemkit.techs.css")
    """
    if module_path is None:
        module_path = tech_name_or_path
        if module_path.endswith(".py"):
            tech_name = os.path.splitext(os.path.basename(module_path))[0]
        else:
            tech_name = module_path.rpartition(".")[2]
    else:
        tech_name = tech_name_or_path
    return TechTest(tech_name, module_path, config)


# not a test function when imported into test modules
test_tech.__test__ = False


__all__ = [
    "test_tech",
    "TechTest",
    "TechTestConfig",
    "load_fixture",
    "TechTestError",
    "ConfigurationError",
    "ReservedModuleError",
    "FilesystemError",
    "NotFoundError",
    "InvalidPathError",
    "SandboxViolationError",
    "UsageError",
    "TechAssertionError",
]
