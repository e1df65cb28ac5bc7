import math
import os

import pytest

from s3objects.reader import ChunkedFileReader, DEFAULT_BLOCK_SIZE


def _drain(reader):
    chunks = []
    while True:
        chunk = reader.next_chunk()
        chunks.append(chunk)
        if not chunk:
            return chunks


@pytest.mark.parametrize("size, block", [(10000, 4096), (8192, 4096), (1, 4096), (4096, 4096)])
def test_chunk_count_and_single_terminal_chunk(tmp_path, size, block):
    path = tmp_path / "data.bin"
    payload = os.urandom(size)
    path.write_bytes(payload)

    reader = ChunkedFileReader(path, block_size=block)
    chunks = _drain(reader)

    assert len(chunks) == math.ceil(size / block) + 1
    assert all(chunks[:-1])
    assert chunks[-1] == b""
    assert b"".join(chunks) == payload
    assert reader.closed
    assert reader.remaining == 0


def test_restarts_from_byte_zero_after_exhaustion(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(os.urandom(9000))

    reader = ChunkedFileReader(path, block_size=4096)
    first = _drain(reader)
    second = _drain(reader)

    assert first == second


def test_empty_file_yields_only_terminal_chunk(tmp_path):
    path = tmp_path / "empty.bin"
    path.write_bytes(b"")

    reader = ChunkedFileReader(path)
    assert reader.next_chunk() == b""
    assert reader.closed


def test_default_block_size_is_positive(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"x")

    with ChunkedFileReader(path) as reader:
        st = os.stat(path)
        assert reader.block_size == (getattr(st, "st_blksize", 0) or DEFAULT_BLOCK_SIZE)


def test_missing_file_raises_oserror(tmp_path):
    with pytest.raises(OSError):
        ChunkedFileReader(tmp_path / "missing.bin")


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="requires named pipes")
def test_non_regular_file_without_size_is_rejected(tmp_path):
    path = tmp_path / "pipe"
    os.mkfifo(path)

    with pytest.raises(OSError, match="fixed size"):
        ChunkedFileReader(path)


def test_read_error_with_bytes_remaining(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"a" * 10000)

    reader = ChunkedFileReader(path, block_size=4096)
    assert len(reader.next_chunk()) == 4096

    with open(path, "r+b") as fh:
        fh.truncate(5000)

    assert len(reader.next_chunk()) == 904
    with pytest.raises(OSError, match="remaining"):
        reader.next_chunk()
    assert reader.closed


def test_context_manager_closes_handle(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"a" * 100)

    with ChunkedFileReader(path) as reader:
        assert not reader.closed
        reader.next_chunk()
    assert reader.closed


@pytest.mark.asyncio
async def test_async_iteration_is_repeatable(tmp_path):
    path = tmp_path / "data.bin"
    payload = os.urandom(10000)
    path.write_bytes(payload)

    reader = ChunkedFileReader(path, block_size=4096)
    first = [chunk async for chunk in reader]
    second = [chunk async for chunk in reader]

    assert b"".join(first) == payload
    assert first == second


@pytest.mark.asyncio
async def test_abandoned_iteration_restarts_from_beginning(tmp_path):
    path = tmp_path / "data.bin"
    payload = os.urandom(10000)
    path.write_bytes(payload)

    reader = ChunkedFileReader(path, block_size=4096)
    partial = reader.__aiter__()
    assert len(await partial.__anext__()) == 4096
    await partial.aclose()

    assert b"".join([chunk async for chunk in reader]) == payload
