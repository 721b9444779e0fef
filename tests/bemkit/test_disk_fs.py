"""
Tests for the asynchronous real-disk filesystem module.
"""

import pytest

from bemkit import fs


class TestDiskFilesystem:
    """Test bemkit.fs against tmp_path."""

    @pytest.mark.asyncio
    async def test_write_creates_parents(self, tmp_path):
        target = tmp_path / "a" / "b" / "c.txt"

        await fs.write(str(target), "hello")

        assert await fs.exists(str(target))
        assert await fs.is_file(str(target))
        assert await fs.is_directory(str(tmp_path / "a"))
        assert await fs.read(str(target)) == "hello"

    @pytest.mark.asyncio
    async def test_write_bytes(self, tmp_path):
        target = tmp_path / "logo.png"

        await fs.write(str(target), b"\x89PNG")

        assert target.read_bytes() == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_listing_and_removal(self, tmp_path):
        await fs.make_tree(str(tmp_path / "dir" / "sub"))
        await fs.write(str(tmp_path / "dir" / "z.txt"), "")

        assert await fs.list(str(tmp_path / "dir")) == ["sub", "z.txt"]

        await fs.remove(str(tmp_path / "dir" / "z.txt"))
        assert not await fs.exists(str(tmp_path / "dir" / "z.txt"))

    @pytest.mark.asyncio
    async def test_times(self, tmp_path):
        target = tmp_path / "t.txt"
        target.write_text("x")

        assert await fs.last_modified(str(target)) == target.stat().st_mtime
        assert (await fs.stat(str(target))).st_size == 1

    @pytest.mark.asyncio
    async def test_open_handle(self, tmp_path):
        target = tmp_path / "h.txt"

        async with await fs.open(str(target), "w") as handle:
            await handle.write("via handle")
            assert handle.name == str(target)

        handle = await fs.open(str(target))
        assert await handle.read() == "via handle"
        await handle.close()
