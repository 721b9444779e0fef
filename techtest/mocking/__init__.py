"""
Module sandbox used to load technology code against the virtual filesystem.
"""

from .sandbox import ModuleSandbox, is_path_target

__all__ = ["ModuleSandbox", "is_path_target"]
