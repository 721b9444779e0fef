"""
Calling-convention views over a single :class:`VirtualFilesystem`.

Technology code reaches the filesystem either through the asynchronous
``bemkit.fs`` module or through the classic synchronous ``os`` /
``os.path`` / ``io`` / ``codecs`` / ``pathlib`` / ``open`` API. Inside a
test sandbox those identifiers are replaced with the views below. The
views hold no state of their own; all of them read and write the same
tree.

Filesystem functions a view does not implement are refused with
:class:`~techtest.core.exceptions.SandboxViolationError` instead of falling
through to the real disk.
"""

import codecs
import fnmatch
import io
import os
import pathlib
import posixpath
import stat as stat_module
import types
from pathlib import PurePosixPath
from typing import Any, Callable, Iterator, List, Optional, Tuple

from techtest.core.exceptions import InvalidPathError, NotFoundError, SandboxViolationError
from techtest.core.filesystem import (
    Content,
    FileStat,
    VirtualFileHandle,
    VirtualFilesystem,
    normalize_path,
)

# Real os functions that would touch the disk and have no virtual counterpart
DENIED_OS_FUNCTIONS = frozenset(
    {
        "open",
        "fdopen",
        "chdir",
        "fchdir",
        "chroot",
        "link",
        "symlink",
        "readlink",
        "truncate",
        "mkfifo",
        "mknod",
        "chown",
        "lchown",
        "lchmod",
        "chflags",
        "lchflags",
        "statvfs",
        "pathconf",
        "listxattr",
        "getxattr",
        "setxattr",
        "removexattr",
        "sendfile",
        "copy_file_range",
        "fwalk",
        "renames",
    }
)


def refuse(function: str) -> Callable[..., Any]:
    """Stand-in for a function that must not run inside the sandbox."""

    def refused(*args: Any, **kwargs: Any) -> Any:
        raise SandboxViolationError(function, args[0] if args else None)

    refused.__name__ = function.rpartition(".")[2]
    return refused


def to_stat_result(info: FileStat) -> os.stat_result:
    """Convert a :class:`FileStat` to a real ``os.stat_result``."""
    if info.is_dir:
        mode = stat_module.S_IFDIR | 0o755
    else:
        mode = stat_module.S_IFREG | 0o644
    return os.stat_result(
        (mode, 0, 0, 1, 0, 0, info.st_size, int(info.st_atime), int(info.st_mtime), int(info.st_mtime)),
        {
            "st_atime": info.st_atime,
            "st_mtime": info.st_mtime,
            "st_ctime": info.st_mtime,
            "st_atime_ns": int(info.st_atime * 1e9),
            "st_mtime_ns": int(info.st_mtime * 1e9),
            "st_ctime_ns": int(info.st_mtime * 1e9),
        },
    )


# ============================================================================
# Asynchronous View
# ============================================================================


class AsyncFileHandle:
    """Awaitable wrapper around :class:`VirtualFileHandle`."""

    def __init__(self, handle: VirtualFileHandle):
        self._handle = handle

    @property
    def name(self) -> str:
        return self._handle.name

    async def read(self, size: int = -1) -> Content:
        return self._handle.read(size)

    async def write(self, data: Content) -> int:
        return self._handle.write(data)

    async def close(self) -> None:
        self._handle.close()

    async def __aenter__(self) -> "AsyncFileHandle":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


class AsyncFilesystem:
    """
    Promise-style filesystem API, substituted for ``bemkit.fs``.

    Example:
        afs = AsyncFilesystem(vfs)
        if await afs.exists("/menu/menu.css"):
            css = await afs.read("/menu/menu.css")
        await afs.write("/out/page.css", css)
    """

    def __init__(self, vfs: VirtualFilesystem):
        self.vfs = vfs

    async def exists(self, path: Any) -> bool:
        return self.vfs.exists(path)

    async def is_file(self, path: Any) -> bool:
        return self.vfs.is_file(path)

    async def is_directory(self, path: Any) -> bool:
        return self.vfs.is_dir(path)

    async def read(self, path: Any) -> Content:
        return self.vfs.read(path)

    async def write(self, path: Any, content: Content) -> None:
        self.vfs.write(path, content)

    async def last_modified(self, path: Any) -> float:
        return self.vfs.last_modified(path)

    async def stat(self, path: Any) -> FileStat:
        return self.vfs.stat(path)

    async def list(self, path: Any) -> List[str]:
        return self.vfs.list(path)

    async def make_tree(self, path: Any) -> None:
        self.vfs.make_tree(path)

    async def remove(self, path: Any) -> None:
        self.vfs.remove(path)

    async def open(self, path: Any, mode: str = "r", encoding: Optional[str] = None) -> AsyncFileHandle:
        return AsyncFileHandle(self.vfs.open(path, mode, encoding))


# ============================================================================
# Synchronous os-module View
# ============================================================================


class VirtualDirEntry:
    """``os.DirEntry`` counterpart yielded by :meth:`OsModuleView.scandir`."""

    def __init__(self, vfs: VirtualFilesystem, directory: str, name: str):
        self._vfs = vfs
        self.name = name
        self.path = posixpath.join(directory, name)

    def __repr__(self) -> str:
        return f"<VirtualDirEntry {self.name!r}>"

    def __fspath__(self) -> str:
        return self.path

    def is_dir(self, *, follow_symlinks: bool = True) -> bool:
        return self._vfs.is_dir(self.path)

    def is_file(self, *, follow_symlinks: bool = True) -> bool:
        return self._vfs.is_file(self.path)

    def is_symlink(self) -> bool:
        return False

    def is_junction(self) -> bool:
        return False

    def stat(self, *, follow_symlinks: bool = True) -> os.stat_result:
        return to_stat_result(self._vfs.stat(self.path))

    def inode(self) -> int:
        return 0


class _ScandirIterator:
    def __init__(self, entries: List[VirtualDirEntry]):
        self._entries = iter(entries)

    def __iter__(self) -> "_ScandirIterator":
        return self

    def __next__(self) -> VirtualDirEntry:
        return next(self._entries)

    def close(self) -> None:
        self._entries = iter(())

    def __enter__(self) -> "_ScandirIterator":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class OsPathView(types.ModuleType):
    """``os.path`` replacement: filesystem queries hit the VFS, the rest is ``posixpath``."""

    def __init__(self, vfs: VirtualFilesystem):
        super().__init__("os.path")
        self._vfs = vfs

    def __getattr__(self, name: str) -> Any:
        return getattr(posixpath, name)

    def exists(self, path: Any) -> bool:
        return self._vfs.exists(path)

    lexists = exists

    def isfile(self, path: Any) -> bool:
        return self._vfs.is_file(path)

    def isdir(self, path: Any) -> bool:
        return self._vfs.is_dir(path)

    def islink(self, path: Any) -> bool:
        return False

    def isjunction(self, path: Any) -> bool:
        return False

    def ismount(self, path: Any) -> bool:
        return normalize_path(path) == "/"

    def getmtime(self, path: Any) -> float:
        return self._vfs.last_modified(path)

    getctime = getmtime

    def getatime(self, path: Any) -> float:
        return self._vfs.stat(path).st_atime

    def getsize(self, path: Any) -> int:
        return self._vfs.stat(path).st_size

    def samefile(self, first: Any, second: Any) -> bool:
        # stat both, like the real function, so missing paths raise
        self._vfs.stat(first)
        self._vfs.stat(second)
        return normalize_path(first) == normalize_path(second)

    def abspath(self, path: Any) -> str:
        return normalize_path(path)

    def realpath(self, path: Any, *, strict: bool = False) -> str:
        return normalize_path(path)


class OsModuleView(types.ModuleType):
    """
    ``os`` replacement for sandboxed code.

    Filesystem functions operate on the VFS with ``/`` as the working
    directory. Functions listed in :data:`DENIED_OS_FUNCTIONS` raise
    :class:`SandboxViolationError`; every other attribute (``environ``,
    ``sep``, ``getpid``...) resolves to the real :mod:`os` module.
    """

    # Nothing here accepts directory descriptors or fds in place of paths
    supports_dir_fd = frozenset()
    supports_fd = frozenset()
    supports_follow_symlinks = frozenset()
    supports_effective_ids = frozenset()

    DirEntry = VirtualDirEntry

    def __init__(self, vfs: VirtualFilesystem):
        super().__init__("os")
        self._vfs = vfs
        self.path = OsPathView(vfs)

    def __getattr__(self, name: str) -> Any:
        if name in DENIED_OS_FUNCTIONS and hasattr(os, name):
            return refuse(f"os.{name}")
        return getattr(os, name)

    def getcwd(self) -> str:
        return "/"

    def listdir(self, path: Any = "/") -> List[str]:
        return self._vfs.list(path)

    def scandir(self, path: Any = "/") -> _ScandirIterator:
        directory = normalize_path(os.fspath(path))
        names = self._vfs.list(directory)
        return _ScandirIterator([VirtualDirEntry(self._vfs, directory, name) for name in names])

    def mkdir(self, path: Any, mode: int = 0o777, *, dir_fd: Optional[int] = None) -> None:
        if self._vfs.exists(path):
            raise FileExistsError(f"File exists: {normalize_path(path)}")
        parent = posixpath.dirname(normalize_path(path))
        if not self._vfs.is_dir(parent):
            raise NotFoundError(parent, "no such directory")
        self._vfs.make_tree(path)

    def makedirs(self, path: Any, mode: int = 0o777, exist_ok: bool = False) -> None:
        if self._vfs.exists(path) and not exist_ok:
            raise FileExistsError(f"File exists: {normalize_path(path)}")
        self._vfs.make_tree(path)

    def remove(self, path: Any, *, dir_fd: Optional[int] = None) -> None:
        if self._vfs.is_dir(path):
            raise IsADirectoryError(f"Is a directory: {normalize_path(path)}")
        self._vfs.remove(path)

    unlink = remove

    def rmdir(self, path: Any, *, dir_fd: Optional[int] = None) -> None:
        if self._vfs.is_file(path):
            raise InvalidPathError(normalize_path(path), "not a directory")
        self._vfs.remove(path)

    def removedirs(self, name: Any) -> None:
        self.rmdir(name)
        head = posixpath.dirname(normalize_path(name))
        while head != "/" and not self._vfs.list(head):
            self._vfs.remove(head)
            head = posixpath.dirname(head)

    def rename(self, src: Any, dst: Any, *, src_dir_fd: Optional[int] = None, dst_dir_fd: Optional[int] = None) -> None:
        self._vfs.rename(src, dst)

    replace = rename

    def stat(self, path: Any, *, dir_fd: Optional[int] = None, follow_symlinks: bool = True) -> os.stat_result:
        return to_stat_result(self._vfs.stat(os.fspath(path)))

    def lstat(self, path: Any, *, dir_fd: Optional[int] = None) -> os.stat_result:
        return self.stat(path)

    def access(self, path: Any, mode: int, **kwargs: Any) -> bool:
        return self._vfs.exists(path)

    def chmod(self, path: Any, mode: int, *, dir_fd: Optional[int] = None, follow_symlinks: bool = True) -> None:
        # permissions are not modelled; the path still has to exist
        self._vfs.stat(path)

    def utime(
        self,
        path: Any,
        times: Optional[Tuple[float, float]] = None,
        *,
        ns: Optional[Tuple[int, int]] = None,
        dir_fd: Optional[int] = None,
        follow_symlinks: bool = True,
    ) -> None:
        if times is not None:
            self._vfs.set_times(path, times[0], times[1])
        elif ns is not None:
            self._vfs.set_times(path, ns[0] / 1e9, ns[1] / 1e9)
        else:
            tick = self._vfs.now()
            self._vfs.set_times(path, tick, tick)

    def walk(
        self,
        top: Any = "/",
        topdown: bool = True,
        onerror: Optional[Callable[[OSError], Any]] = None,
        followlinks: bool = False,
    ) -> Iterator[Tuple[str, List[str], List[str]]]:
        top = normalize_path(os.fspath(top))
        try:
            names = self._vfs.list(top)
        except OSError as e:
            if onerror is not None:
                onerror(e)
            return
        dirs = [n for n in names if self._vfs.is_dir(posixpath.join(top, n))]
        files = [n for n in names if n not in dirs]
        if topdown:
            yield top, dirs, files
        for name in dirs:
            yield from self.walk(posixpath.join(top, name), topdown, onerror, followlinks)
        if not topdown:
            yield top, dirs, files


# ============================================================================
# open / io / pathlib Views
# ============================================================================


def make_open(vfs: VirtualFilesystem):
    """Build an ``open`` builtin replacement bound to ``vfs``."""

    def open(file: Any, mode: str = "r", buffering: int = -1, encoding: Optional[str] = None, **kwargs: Any) -> VirtualFileHandle:
        if isinstance(file, int):
            raise SandboxViolationError("open", file)
        return vfs.open(os.fspath(file), mode, encoding)

    return open


class IoModuleView(types.ModuleType):
    """``io`` replacement whose ``open`` is bound to the VFS."""

    def __init__(self, vfs: VirtualFilesystem):
        super().__init__("io")
        self.open = make_open(vfs)

    def __getattr__(self, name: str) -> Any:
        if name in ("FileIO", "open_code"):
            return refuse(f"io.{name}")
        return getattr(io, name)


class CodecsModuleView(types.ModuleType):
    """``codecs`` replacement whose ``open`` is bound to the VFS."""

    def __init__(self, vfs: VirtualFilesystem):
        super().__init__("codecs")
        self._open = make_open(vfs)

    def open(
        self,
        filename: Any,
        mode: str = "r",
        encoding: Optional[str] = None,
        errors: str = "strict",
        buffering: int = -1,
    ) -> Any:
        if encoding is None:
            return self._open(filename, mode, buffering)
        if "b" not in mode:
            mode = mode + "b"
        file = self._open(filename, mode, buffering)
        info = codecs.lookup(encoding)
        wrapper = codecs.StreamReaderWriter(file, info.streamreader, info.streamwriter, errors)
        wrapper.encoding = encoding
        return wrapper

    def __getattr__(self, name: str) -> Any:
        return getattr(codecs, name)


def _match_parts(parts: List[str], pattern: List[str]) -> bool:
    if not pattern:
        return not parts
    if pattern[0] == "**":
        return any(_match_parts(parts[i:], pattern[1:]) for i in range(len(parts) + 1))
    return (
        bool(parts)
        and fnmatch.fnmatchcase(parts[0], pattern[0])
        and _match_parts(parts[1:], pattern[1:])
    )


class VirtualPath(PurePosixPath):
    """
    ``pathlib.Path`` counterpart over a VFS.

    Subclasses bind ``_vfs``; :class:`PathlibModuleView` creates one per
    filesystem. Relative paths are taken relative to ``/``.
    """

    _vfs: VirtualFilesystem

    @classmethod
    def cwd(cls) -> "VirtualPath":
        return cls("/")

    @classmethod
    def home(cls) -> "VirtualPath":
        return cls("/")

    @property
    def _vfs_path(self) -> str:
        return normalize_path(str(self))

    def absolute(self) -> "VirtualPath":
        return type(self)(self._vfs_path)

    def resolve(self, strict: bool = False) -> "VirtualPath":
        if strict and not self._vfs.exists(self._vfs_path):
            raise NotFoundError(self._vfs_path)
        return type(self)(self._vfs_path)

    def expanduser(self) -> "VirtualPath":
        return self

    def exists(self, *, follow_symlinks: bool = True) -> bool:
        return self._vfs.exists(self._vfs_path)

    def is_file(self, *, follow_symlinks: bool = True) -> bool:
        return self._vfs.is_file(self._vfs_path)

    def is_dir(self, *, follow_symlinks: bool = True) -> bool:
        return self._vfs.is_dir(self._vfs_path)

    def is_symlink(self) -> bool:
        return False

    def stat(self, *, follow_symlinks: bool = True) -> os.stat_result:
        return to_stat_result(self._vfs.stat(self._vfs_path))

    lstat = stat

    def samefile(self, other_path: Any) -> bool:
        return self._vfs_path == normalize_path(os.fspath(other_path)) and self.exists()

    def open(self, mode: str = "r", buffering: int = -1, encoding: Optional[str] = None, errors: Optional[str] = None, newline: Optional[str] = None) -> VirtualFileHandle:
        return self._vfs.open(self._vfs_path, mode, encoding)

    def read_bytes(self) -> bytes:
        content = self._vfs.read(self._vfs_path)
        return content.encode("utf-8") if isinstance(content, str) else content

    def read_text(self, encoding: Optional[str] = None, errors: Optional[str] = None, newline: Optional[str] = None) -> str:
        content = self._vfs.read(self._vfs_path)
        if isinstance(content, bytes):
            return content.decode(encoding or "utf-8", errors or "strict")
        return content

    def write_bytes(self, data: Any) -> int:
        content = bytes(memoryview(data))
        self._vfs.write(self._vfs_path, content)
        return len(content)

    def write_text(self, data: str, encoding: Optional[str] = None, errors: Optional[str] = None, newline: Optional[str] = None) -> int:
        if not isinstance(data, str):
            raise TypeError(f"data must be str, not {type(data).__name__}")
        self._vfs.write(self._vfs_path, data)
        return len(data)

    def touch(self, mode: int = 0o666, exist_ok: bool = True) -> None:
        if self._vfs.is_file(self._vfs_path):
            if not exist_ok:
                raise FileExistsError(f"File exists: {self._vfs_path}")
            self._vfs.touch(self._vfs_path)
        else:
            self._vfs.write(self._vfs_path, "")

    def mkdir(self, mode: int = 0o777, parents: bool = False, exist_ok: bool = False) -> None:
        if self._vfs.exists(self._vfs_path):
            if exist_ok and self._vfs.is_dir(self._vfs_path):
                return
            raise FileExistsError(f"File exists: {self._vfs_path}")
        parent = posixpath.dirname(self._vfs_path)
        if not parents and not self._vfs.is_dir(parent):
            raise NotFoundError(parent, "no such directory")
        self._vfs.make_tree(self._vfs_path)

    def rmdir(self) -> None:
        if self._vfs.is_file(self._vfs_path):
            raise InvalidPathError(self._vfs_path, "not a directory")
        self._vfs.remove(self._vfs_path)

    def unlink(self, missing_ok: bool = False) -> None:
        if missing_ok and not self._vfs.exists(self._vfs_path):
            return
        if self._vfs.is_dir(self._vfs_path):
            raise IsADirectoryError(f"Is a directory: {self._vfs_path}")
        self._vfs.remove(self._vfs_path)

    def rename(self, target: Any) -> "VirtualPath":
        self._vfs.rename(self._vfs_path, os.fspath(target))
        return type(self)(target)

    replace = rename

    def chmod(self, mode: int, *, follow_symlinks: bool = True) -> None:
        self._vfs.stat(self._vfs_path)

    def iterdir(self) -> Iterator["VirtualPath"]:
        for name in self._vfs.list(self._vfs_path):
            yield self / name

    def _descendants(self, directory: str) -> Iterator[str]:
        for name in self._vfs.list(directory):
            child = posixpath.join(directory, name)
            yield child
            if self._vfs.is_dir(child):
                yield from self._descendants(child)

    def glob(self, pattern: str) -> Iterator["VirtualPath"]:
        if not self._vfs.is_dir(self._vfs_path):
            return
        wanted = [part for part in pattern.split("/") if part]
        base = self._vfs_path.rstrip("/")
        for candidate in self._descendants(self._vfs_path):
            relative = candidate[len(base) + 1 :]
            if _match_parts(relative.split("/"), wanted):
                yield self / relative

    def rglob(self, pattern: str) -> Iterator["VirtualPath"]:
        return self.glob("**/" + pattern)

    def symlink_to(self, target: Any, target_is_directory: bool = False) -> None:
        raise SandboxViolationError("Path.symlink_to", self._vfs_path)

    def hardlink_to(self, target: Any) -> None:
        raise SandboxViolationError("Path.hardlink_to", self._vfs_path)

    def readlink(self) -> "VirtualPath":
        raise SandboxViolationError("Path.readlink", self._vfs_path)


class PathlibModuleView(types.ModuleType):
    """``pathlib`` replacement whose ``Path`` operates on the VFS."""

    def __init__(self, vfs: VirtualFilesystem):
        super().__init__("pathlib")
        path_class = type("Path", (VirtualPath,), {"_vfs": vfs})
        self.Path = path_class
        self.PosixPath = path_class

    def __getattr__(self, name: str) -> Any:
        return getattr(pathlib, name)
