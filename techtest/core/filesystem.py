"""
In-memory filesystem tree used as the sandbox for technology tests.

The tree is built from a nested description where mapping values denote
directories and ``str``/``bytes`` values denote file contents:

    {
        "menu": {
            "menu.css": ".menu {}",
            "__item": {"menu__item.css": ".menu__item {}"},
        }
    }

All views exposed to code under test (see :mod:`techtest.core.facades`)
operate on one :class:`VirtualFilesystem` instance, so every calling
convention observes the same state.
"""

import io
import logging
import os
import posixpath
import time
from dataclasses import dataclass, field
from collections.abc import Mapping
from typing import Any, Dict, Iterator, List, Optional, Union

from techtest.core.exceptions import (
    ConfigurationError,
    InvalidPathError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

Content = Union[str, bytes]


# ============================================================================
# Nodes
# ============================================================================


@dataclass
class FileNode:
    """A file with its content and timestamps."""

    content: Content
    mtime: float
    atime: float


@dataclass
class DirectoryNode:
    """A directory mapping child names to nodes."""

    children: Dict[str, Union["FileNode", "DirectoryNode"]] = field(
        default_factory=dict
    )
    mtime: float = 0.0


FsNode = Union[FileNode, DirectoryNode]


@dataclass(frozen=True)
class FileStat:
    """Subset of ``os.stat_result`` the views need."""

    st_size: int
    st_mtime: float
    st_atime: float
    is_dir: bool


# ============================================================================
# Path Utilities
# ============================================================================


def normalize_path(path: Any) -> str:
    """
    Normalize a path to an absolute POSIX path inside the virtual tree.

    Relative paths are taken relative to ``/``.

    Example:
        >>> normalize_path("blocks/../menu//menu.css")
        '/menu/menu.css'
    """
    if isinstance(path, bytes):
        path = path.decode("utf-8")
    elif not isinstance(path, str):
        path = os.fspath(path) if hasattr(path, "__fspath__") else str(path)
    if not path.startswith("/"):
        path = "/" + path
    normalized = posixpath.normpath(path)
    # normpath keeps a leading "//"
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return normalized


def split_path(path: str) -> List[str]:
    """Split a normalized path into its components (root yields ``[]``)."""
    return [part for part in normalize_path(path).split("/") if part]


def validate_source_tree(sources: Any, where: str = "/") -> None:
    """
    Check a nested source description without building anything.

    Raises:
        ConfigurationError: If a level is not a mapping, a name is not a
            plain path component, or a value is not a mapping/str/bytes
    """
    if not isinstance(sources, Mapping):
        raise ConfigurationError(
            f"Source tree at {where} must be a mapping, got {type(sources).__name__}"
        )

    for name, value in sources.items():
        if not isinstance(name, str) or not name or "/" in name or name in (".", ".."):
            raise ConfigurationError(f"Invalid source node name {name!r} in {where}")

        node_path = posixpath.join(where, name)
        if isinstance(value, Mapping):
            validate_source_tree(value, node_path)
        elif not isinstance(value, (str, bytes)):
            raise ConfigurationError(
                f"Source node {node_path} must be a mapping, str or bytes, "
                f"got {type(value).__name__}"
            )


# ============================================================================
# Virtual Filesystem
# ============================================================================


class VirtualFilesystem:
    """
    Mutable in-memory tree rooted at ``/``.

    Timestamps come from :meth:`now`, a clock that never returns the same
    value twice, so a write that follows a recorded start time is always
    strictly later than it.

    Example:
        vfs = VirtualFilesystem({"a": {"b.txt": "hello"}})
        vfs.exists("/a/b.txt")           # True
        vfs.write("/out/c.txt", "data")  # creates /out
        vfs.read("/out/c.txt")           # 'data'
    """

    def __init__(self, sources: Optional[Mapping[str, Any]] = None):
        """
        Build the tree from a nested source description.

        Args:
            sources: Nested mapping of names to directories (mappings) or
                file contents (str/bytes)

        Raises:
            ConfigurationError: If the description is malformed
        """
        sources = sources or {}
        validate_source_tree(sources)
        self._last_tick = 0.0
        self._root = DirectoryNode(mtime=self.now())
        self._populate(self._root, sources)
        logger.debug(f"Virtual filesystem built with {len(list(self.walk('/')))} files")

    # ------------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------------

    def now(self) -> float:
        """Return a strictly increasing timestamp (seconds since the epoch)."""
        tick = time.time()
        if tick <= self._last_tick:
            tick = self._last_tick + 1e-6
        self._last_tick = tick
        return tick

    # ------------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------------

    def _populate(self, directory: DirectoryNode, sources: Mapping) -> None:
        for name, value in sources.items():
            if isinstance(value, Mapping):
                child = DirectoryNode(mtime=self.now())
                directory.children[name] = child
                self._populate(child, value)
            else:
                tick = self.now()
                directory.children[name] = FileNode(value, mtime=tick, atime=tick)

    # ------------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------------

    def _lookup(self, path: Any) -> Optional[FsNode]:
        node: FsNode = self._root
        for part in split_path(path):
            if not isinstance(node, DirectoryNode):
                return None
            node = node.children.get(part)
            if node is None:
                return None
        return node

    def _get_file(self, path: Any) -> FileNode:
        node = self._lookup(path)
        if node is None:
            raise NotFoundError(normalize_path(path))
        if isinstance(node, DirectoryNode):
            raise NotFoundError(normalize_path(path), "is a directory")
        return node

    def _get_directory(self, path: Any) -> DirectoryNode:
        node = self._lookup(path)
        if node is None:
            raise NotFoundError(normalize_path(path), "no such directory")
        if not isinstance(node, DirectoryNode):
            raise InvalidPathError(normalize_path(path), "not a directory")
        return node

    def exists(self, path: Any) -> bool:
        """Check whether a file or directory exists. Never raises."""
        return self._lookup(path) is not None

    def is_file(self, path: Any) -> bool:
        return isinstance(self._lookup(path), FileNode)

    def is_dir(self, path: Any) -> bool:
        return isinstance(self._lookup(path), DirectoryNode)

    def read(self, path: Any) -> Content:
        """
        Read file content.

        Raises:
            NotFoundError: If the path is absent or is a directory
        """
        node = self._get_file(path)
        node.atime = self.now()
        return node.content

    def last_modified(self, path: Any) -> float:
        """
        Get the last modification timestamp of a file or directory.

        Raises:
            NotFoundError: If the path is absent
        """
        node = self._lookup(path)
        if node is None:
            raise NotFoundError(normalize_path(path))
        return node.mtime

    def stat(self, path: Any) -> FileStat:
        node = self._lookup(path)
        if node is None:
            raise NotFoundError(normalize_path(path))
        if isinstance(node, DirectoryNode):
            return FileStat(0, node.mtime, node.mtime, True)
        return FileStat(len(node.content), node.mtime, node.atime, False)

    def list(self, path: Any) -> List[str]:
        """List child names of a directory, sorted."""
        return sorted(self._get_directory(path).children)

    def walk(self, path: Any = "/") -> Iterator[str]:
        """Yield absolute paths of all files under ``path``, depth first, sorted."""
        node = self._lookup(path)
        if node is None:
            return
        base = normalize_path(path)
        if isinstance(node, FileNode):
            yield base
            return
        for name in sorted(node.children):
            yield from self.walk(posixpath.join(base, name))

    # ------------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------------

    def make_tree(self, path: Any) -> None:
        """
        Create a directory and all missing ancestors.

        Raises:
            InvalidPathError: If any component along the path is a file
        """
        node = self._root
        walked = "/"
        for part in split_path(path):
            walked = posixpath.join(walked, part)
            child = node.children.get(part)
            if child is None:
                child = DirectoryNode(mtime=self.now())
                node.children[part] = child
            elif isinstance(child, FileNode):
                raise InvalidPathError(normalize_path(path), f"{walked} is a file")
            node = child

    def write(self, path: Any, content: Content) -> None:
        """
        Write file content, creating parent directories as needed.

        Raises:
            InvalidPathError: If an ancestor is a file or the path is a directory
        """
        normalized = normalize_path(path)
        parts = split_path(normalized)
        if not parts:
            raise InvalidPathError(normalized, "cannot write to the root directory")

        parent_path = posixpath.dirname(normalized)
        self.make_tree(parent_path)
        parent = self._get_directory(parent_path)

        existing = parent.children.get(parts[-1])
        if isinstance(existing, DirectoryNode):
            raise InvalidPathError(normalized, "is a directory")

        tick = self.now()
        parent.children[parts[-1]] = FileNode(content, mtime=tick, atime=tick)
        parent.mtime = tick
        logger.debug(f"write {normalized} ({len(content)} bytes/chars)")

    def touch(self, path: Any) -> None:
        """
        Update access and modification times without changing content.

        Raises:
            NotFoundError: If the file does not exist
        """
        node = self._get_file(path)
        tick = self.now()
        node.mtime = tick
        node.atime = tick

    def set_times(self, path: Any, atime: float, mtime: float) -> None:
        """
        Set access and modification times explicitly (``os.utime``).

        Raises:
            NotFoundError: If the path is absent
        """
        node = self._lookup(path)
        if node is None:
            raise NotFoundError(normalize_path(path))
        node.mtime = mtime
        if isinstance(node, FileNode):
            node.atime = atime

    def remove(self, path: Any) -> None:
        """Remove a file or an empty directory."""
        normalized = normalize_path(path)
        if normalized == "/":
            raise InvalidPathError(normalized, "cannot remove the root directory")
        node = self._lookup(normalized)
        if node is None:
            raise NotFoundError(normalized)
        if isinstance(node, DirectoryNode) and node.children:
            raise InvalidPathError(normalized, "directory not empty")
        parent = self._get_directory(posixpath.dirname(normalized))
        del parent.children[posixpath.basename(normalized)]
        parent.mtime = self.now()

    def rename(self, source: Any, target: Any) -> None:
        """
        Move a file or directory, replacing a target file or empty directory.

        Raises:
            NotFoundError: If the source or the target's parent is absent
            InvalidPathError: If the move would replace a non-empty directory,
                mix a file with a directory, or put a directory inside itself
        """
        src = normalize_path(source)
        dst = normalize_path(target)
        if "/" in (src, dst):
            raise InvalidPathError(src, "cannot move the root directory")
        node = self._lookup(src)
        if node is None:
            raise NotFoundError(src)
        if src == dst:
            return
        if isinstance(node, DirectoryNode) and dst.startswith(src + "/"):
            raise InvalidPathError(dst, f"cannot move {src} inside itself")

        target_parent = self._get_directory(posixpath.dirname(dst))
        existing = target_parent.children.get(posixpath.basename(dst))
        if isinstance(existing, DirectoryNode):
            if not isinstance(node, DirectoryNode):
                raise InvalidPathError(dst, "is a directory")
            if existing.children:
                raise InvalidPathError(dst, "directory not empty")
        elif existing is not None and isinstance(node, DirectoryNode):
            raise InvalidPathError(dst, "not a directory")

        source_parent = self._get_directory(posixpath.dirname(src))
        del source_parent.children[posixpath.basename(src)]
        target_parent.children[posixpath.basename(dst)] = node
        tick = self.now()
        source_parent.mtime = tick
        target_parent.mtime = tick
        logger.debug(f"rename {src} -> {dst}")

    def open(self, path: Any, mode: str = "r", encoding: Optional[str] = None) -> "VirtualFileHandle":
        """
        Open a file and return a scoped handle.

        ``"w"``, ``"x"`` and ``"a"`` create the file right away (``"w"`` also
        truncates it); written data is committed on close. ``"w+"`` on an
        existing file keeps its content until something is written, and a
        clean close only refreshes the timestamps, which is what
        :meth:`techtest.TechTest.touch_file` relies on.

        Raises:
            NotFoundError: If opened for reading and the file does not exist
            InvalidPathError: If the file cannot be created at ``path``
            ValueError: If the mode is not supported
        """
        return VirtualFileHandle(self, normalize_path(path), mode, encoding)


# ============================================================================
# File Handle
# ============================================================================


class VirtualFileHandle:
    """
    File-like object over a :class:`VirtualFilesystem` entry.

    Content is decoded (or encoded) only when the handle is actually read,
    written or positioned, so opening a binary file in text mode just to
    touch it never fails.
    """

    SUPPORTED_MODES = {"r", "rb", "r+", "rb+", "w", "wb", "w+", "wb+", "a", "ab", "a+", "ab+", "x", "xb"}

    def __init__(self, vfs: VirtualFilesystem, path: str, mode: str, encoding: Optional[str]):
        # "r+b" and "rb+" are the same mode
        flags = mode.replace("t", "").replace("b", "")
        mode = flags[:1] + ("b" if "b" in mode else "") + flags[1:]
        if mode not in self.SUPPORTED_MODES:
            raise ValueError(f"Unsupported mode {mode!r} for {path}")

        self._vfs = vfs
        self.name = path
        self.mode = mode
        self._encoding = encoding or "utf-8"
        self._binary = "b" in mode
        self._writable = mode[0] in "wax" or "+" in mode
        self._touch_on_close = mode[0] == "w" and "+" in mode
        self._dirty = False
        self._closed = False
        self._buffer: Optional[Union[io.BytesIO, io.StringIO]] = None

        if mode[0] == "x" and vfs.exists(path):
            raise FileExistsError(f"File exists: {path}")

        empty: Content = b"" if self._binary else ""
        if mode[0] == "r":
            # Raises NotFoundError for absent files and directories
            self._initial = vfs.read(path)
        elif vfs.is_file(path) and (mode[0] == "a" or self._touch_on_close):
            self._initial = vfs.read(path)
        else:
            self._initial = empty
            vfs.write(path, empty)

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError(f"I/O operation on closed file: {self.name}")

    def _stream(self) -> Union[io.BytesIO, io.StringIO]:
        self._check_open()
        if self._buffer is None:
            initial = self._initial
            if self._binary:
                if isinstance(initial, str):
                    initial = initial.encode(self._encoding)
                self._buffer = io.BytesIO(initial)
            else:
                if isinstance(initial, bytes):
                    initial = initial.decode(self._encoding)
                self._buffer = io.StringIO(initial)
            if self.mode[0] == "a":
                self._buffer.seek(0, io.SEEK_END)
        return self._buffer

    def readable(self) -> bool:
        return self.mode[0] == "r" or "+" in self.mode

    def writable(self) -> bool:
        return self._writable

    def seekable(self) -> bool:
        return True

    def fileno(self) -> int:
        raise io.UnsupportedOperation(f"{self.name} has no file descriptor")

    def read(self, size: int = -1) -> Content:
        if not self.readable():
            raise io.UnsupportedOperation("not readable")
        return self._stream().read(size)

    def readline(self, size: int = -1) -> Content:
        return self._stream().readline(size)

    def readlines(self) -> list:
        return self._stream().readlines()

    def __iter__(self):
        return iter(self.readlines())

    def write(self, data: Content) -> int:
        self._check_open()
        if not self._writable:
            raise io.UnsupportedOperation("not writable")
        stream = self._stream()
        if self.mode[0] == "a":
            stream.seek(0, io.SEEK_END)
        self._dirty = True
        return stream.write(data)

    def writelines(self, lines) -> None:
        for line in lines:
            self.write(line)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._stream().seek(offset, whence)

    def tell(self) -> int:
        return self._stream().tell()

    def flush(self) -> None:
        pass

    def close(self) -> None:
        """Commit written data; a clean ``"w+"`` close only refreshes mtime."""
        if self._closed:
            return
        self._closed = True
        if self._dirty:
            self._vfs.write(self.name, self._buffer.getvalue())
        elif self._touch_on_close:
            self._vfs.touch(self.name)

    def __enter__(self) -> "VirtualFileHandle":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
