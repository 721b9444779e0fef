"""
Core building blocks for techtest.

This package contains the virtual filesystem, its views and the exception
hierarchy; the session and sandbox depend on it, not the other way round.
"""

from .exceptions import (
    TechTestError,
    UsageError,
    ConfigurationError,
    ReservedModuleError,
    FilesystemError,
    NotFoundError,
    InvalidPathError,
    SandboxViolationError,
    TechAssertionError,
)

from .filesystem import (
    VirtualFilesystem,
    VirtualFileHandle,
    FileStat,
    normalize_path,
    validate_source_tree,
)

from .facades import (
    AsyncFilesystem,
    AsyncFileHandle,
    OsModuleView,
    OsPathView,
    IoModuleView,
    CodecsModuleView,
    PathlibModuleView,
    VirtualPath,
    VirtualDirEntry,
    make_open,
)

__all__ = [
    # Exceptions
    "TechTestError",
    "UsageError",
    "ConfigurationError",
    "ReservedModuleError",
    "FilesystemError",
    "NotFoundError",
    "InvalidPathError",
    "SandboxViolationError",
    "TechAssertionError",
    # Filesystem
    "VirtualFilesystem",
    "VirtualFileHandle",
    "FileStat",
    "normalize_path",
    "validate_source_tree",
    # Views
    "AsyncFilesystem",
    "AsyncFileHandle",
    "OsModuleView",
    "OsPathView",
    "IoModuleView",
    "CodecsModuleView",
    "PathlibModuleView",
    "VirtualPath",
    "VirtualDirEntry",
    "make_open",
]
