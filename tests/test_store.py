"""
Tests for backing stores and the JSON codec.
"""

import os

import pytest

from livepersist.core.json_utils import JsonCodec
from livepersist.errors import ParseError
from livepersist.state.store import FileStore, MemoryStore, Store


class TestFileStore:

    @pytest.mark.asyncio
    async def test_missing_file_raises_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            await FileStore().read(str(tmp_path / "absent.json"))

    @pytest.mark.asyncio
    async def test_write_then_read(self, tmp_path):
        store = FileStore(fsync=True)
        path = str(tmp_path / "deep" / "dir" / "state.json")

        await store.write(path, b'{"a":1}')

        assert await store.read(path) == b'{"a":1}'

    @pytest.mark.asyncio
    async def test_overwrite_leaves_no_temp_files(self, tmp_path):
        store = FileStore()
        path = tmp_path / "state.json"

        await store.write(str(path), b"[1]")
        await store.write(str(path), b"[1,2]")

        assert path.read_bytes() == b"[1,2]"
        assert os.listdir(tmp_path) == ["state.json"]

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_content(self, tmp_path, monkeypatch):
        store = FileStore()
        path = tmp_path / "state.json"
        await store.write(str(path), b"[1]")

        def broken_replace(src, dst):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr("livepersist.state.store.os.replace", broken_replace)

        with pytest.raises(PermissionError):
            await store.write(str(path), b"[2]")

        assert path.read_bytes() == b"[1]"
        assert os.listdir(tmp_path) == ["state.json"]

    def test_satisfies_protocol(self):
        assert isinstance(FileStore(), Store)
        assert isinstance(MemoryStore(), Store)


class TestMemoryStore:

    @pytest.mark.asyncio
    async def test_missing_key_raises_not_found(self):
        with pytest.raises(FileNotFoundError):
            await MemoryStore().read("x")

    @pytest.mark.asyncio
    async def test_write_then_read(self):
        store = MemoryStore()
        await store.write("x", bytearray(b"{}"))

        assert await store.read("x") == b"{}"
        assert isinstance(store.blobs["x"], bytes)


class TestJsonCodec:

    def test_encode_is_compact(self):
        assert JsonCodec().encode({"a": [1, 2], "b": None}) == b'{"a":[1,2],"b":null}'

    def test_decode_accepts_str_and_bytes(self):
        codec = JsonCodec()
        assert codec.decode('{"a": 1}') == {"a": 1}
        assert codec.decode(b'[true, 1.5, "x"]') == [True, 1.5, "x"]

    def test_corrupt_input(self):
        with pytest.raises(ParseError):
            JsonCodec().decode(b"{not json")

    def test_unsupported_value(self):
        with pytest.raises(ParseError) as exc_info:
            JsonCodec().encode({"when": object()})
        assert exc_info.value.__cause__ is not None
