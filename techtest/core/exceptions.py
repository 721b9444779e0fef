"""
Centralized exception hierarchy for techtest.

This module defines all custom exceptions raised by the harness so that a
test author can tell "the harness detected a mismatch" apart from "the
technology under test is broken" (the latter propagates unwrapped).
"""

import errno
from typing import Any, Iterable


# ============================================================================
# Base Exceptions
# ============================================================================


class TechTestError(Exception):
    """Base exception for all techtest errors."""

    pass


class UsageError(TechTestError):
    """Raised when the session API is called in an invalid order or state."""

    pass


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationError(TechTestError):
    """Raised synchronously at setup time for invalid session configuration."""

    pass


class ReservedModuleError(ConfigurationError):
    """Raised when a test tries to mock a module the harness already manages."""

    def __init__(self, module_ids: Iterable[str], reserved: Iterable[str]):
        self.module_ids = sorted(module_ids)
        self.reserved = tuple(reserved)
        super().__init__(
            f"Modules {', '.join(repr(m) for m in self.module_ids)} are already "
            f"mocked by the harness (reserved: {', '.join(self.reserved)}). "
            f"Use with_source_files() to populate the filesystem instead."
        )


# ============================================================================
# Filesystem Exceptions
# ============================================================================


class FilesystemError(TechTestError):
    """Base exception for virtual filesystem operations."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(message)


class NotFoundError(FilesystemError, FileNotFoundError):
    """Path does not exist in the virtual filesystem (or is not a file)."""

    def __init__(self, path: str, reason: str = "no such file"):
        super().__init__(path, f"{reason}: {path}")
        self.errno = errno.ENOENT


class InvalidPathError(FilesystemError, NotADirectoryError):
    """Path cannot be created because an ancestor is a file, or the target is a directory."""

    def __init__(self, path: str, reason: str):
        super().__init__(path, f"invalid path {path}: {reason}")
        self.errno = errno.ENOTDIR


class SandboxViolationError(FilesystemError, OSError):
    """
    Sandboxed code called a filesystem function the virtual filesystem does
    not provide. The call is refused instead of reaching the real disk.
    """

    def __init__(self, function: str, path: Any = None):
        self.function = function
        where = f" on {path}" if path is not None else ""
        super().__init__(
            str(path) if path is not None else "",
            f"{function}(){where} is not available inside the techtest sandbox",
        )
        self.errno = errno.ENOTSUP


# ============================================================================
# Assertion Exceptions
# ============================================================================


class TechAssertionError(TechTestError, AssertionError):
    """An expectation about the virtual filesystem state was not met."""

    def __init__(self, message: str, path: str, expected: Any = None, actual: Any = None):
        self.path = path
        self.expected = expected
        self.actual = actual
        detail = message
        if expected is not None or actual is not None:
            detail += f"\n  expected: {expected!r}\n  actual:   {actual!r}"
        super().__init__(detail)
