"""
Exceptions raised by the bemkit framework.
"""


class BemkitError(Exception):
    """Base exception for all bemkit errors."""

    pass


class TechNotFoundError(BemkitError):
    """Raised when a technology name cannot be resolved to a module."""

    def __init__(self, tech_name: str, searched: list):
        self.tech_name = tech_name
        self.searched = searched
        super().__init__(
            f"Technology '{tech_name}' not found (searched: {', '.join(searched) or 'nothing'})"
        )


class TechLoadError(BemkitError):
    """Raised when a technology module does not define a usable technology class."""

    def __init__(self, tech_name: str, path: str, reason: str):
        self.tech_name = tech_name
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load technology '{tech_name}' from {path}: {reason}")


class DeclarationError(BemkitError):
    """Raised when a build declaration has an unexpected shape."""

    pass
