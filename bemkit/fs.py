"""
Asynchronous filesystem API used by levels and technologies.

Every function is a coroutine so technologies can be written the same way
whether they touch a real disk or an in-memory tree. Blocking calls run in
the default executor.
"""

import asyncio
import builtins
import os
from typing import Any, List, Optional, Union

Content = Union[str, bytes]


async def exists(path: Any) -> bool:
    return await asyncio.to_thread(os.path.exists, path)


async def is_file(path: Any) -> bool:
    return await asyncio.to_thread(os.path.isfile, path)


async def is_directory(path: Any) -> bool:
    return await asyncio.to_thread(os.path.isdir, path)


def _read(path: Any) -> str:
    with builtins.open(path, "r", encoding="utf-8") as f:
        return f.read()


async def read(path: Any) -> Content:
    return await asyncio.to_thread(_read, path)


def _write(path: Any, content: Content) -> None:
    parent = os.path.dirname(os.fspath(path))
    if parent:
        os.makedirs(parent, exist_ok=True)
    if isinstance(content, bytes):
        with builtins.open(path, "wb") as f:
            f.write(content)
    else:
        with builtins.open(path, "w", encoding="utf-8") as f:
            f.write(content)


async def write(path: Any, content: Content) -> None:
    """Write content, creating parent directories as needed."""
    await asyncio.to_thread(_write, path, content)


async def last_modified(path: Any) -> float:
    return await asyncio.to_thread(os.path.getmtime, path)


async def stat(path: Any) -> os.stat_result:
    return await asyncio.to_thread(os.stat, path)


async def list(path: Any) -> List[str]:
    return sorted(await asyncio.to_thread(os.listdir, path))


async def make_tree(path: Any) -> None:
    await asyncio.to_thread(os.makedirs, path, exist_ok=True)


async def remove(path: Any) -> None:
    await asyncio.to_thread(os.remove, path)


class FileHandle:
    """Awaitable wrapper around a regular file object."""

    def __init__(self, fileobj):
        self._file = fileobj

    @property
    def name(self) -> str:
        return self._file.name

    async def read(self, size: int = -1) -> Content:
        return await asyncio.to_thread(self._file.read, size)

    async def write(self, data: Content) -> int:
        return await asyncio.to_thread(self._file.write, data)

    async def close(self) -> None:
        await asyncio.to_thread(self._file.close)

    async def __aenter__(self) -> "FileHandle":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


async def open(path: Any, mode: str = "r", encoding: Optional[str] = None) -> FileHandle:
    if "b" not in mode and encoding is None:
        encoding = "utf-8"

    fileobj = await asyncio.to_thread(builtins.open, path, mode, encoding=encoding)
    return FileHandle(fileobj)
