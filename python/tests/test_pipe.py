"""
Tests for ReadStream.pipe into WriteStream and GenericSink destinations.

These tests focus on:
1. Destination dispatch (WriteStream, GenericSink, anything else)
2. End propagation exactly once, or never with end=False
3. Error forwarding from source to destination
4. Backpressure-driven pause/resume
5. End-to-end file copies through real handles
"""

import asyncio
import io

import pytest

from fylo.errors import InvalidDestinationError, NotOpenError
from fylo.streams import GenericSink, ReadStream, StreamState, WriteStream


async def settle(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


# ============================================================================
# DISPATCH
# ============================================================================


@pytest.mark.asyncio
async def test_pipe_requires_open_source(temp_dir):
    """Test: Piping from a CLOSED source raises NotOpenError."""
    source = ReadStream(temp_dir / "in.txt")

    with pytest.raises(NotOpenError):
        source.pipe(GenericSink(write=lambda chunk: None))


@pytest.mark.asyncio
@pytest.mark.parametrize("destination", [object(), io.BytesIO(), "path.txt", None])
async def test_pipe_rejects_unknown_destinations(temp_dir, read_factory, destination):
    """Test: Anything that is not a WriteStream or GenericSink is rejected synchronously."""
    factory = read_factory(chunks=[b"x"])
    source = ReadStream(temp_dir / "in.txt", handle_factory=factory)
    await source.open()

    with pytest.raises(InvalidDestinationError):
        source.pipe(destination)

    assert factory.last.piped_to == []


# ============================================================================
# WRITESTREAM DESTINATIONS
# ============================================================================


@pytest.mark.asyncio
async def test_pipe_opens_and_closes_destination_once(temp_dir, read_factory, write_factory):
    """Test: An unopened destination is opened, fed, and closed once at the end."""
    readers = read_factory(chunks=[b"a", b"b"])
    writers = write_factory()
    source = ReadStream(temp_dir / "in.txt", handle_factory=readers)
    destination = WriteStream(temp_dir / "out.txt", handle_factory=writers)
    await source.open()

    result = source.pipe(destination)

    assert result is destination
    assert destination.state is StreamState.OPENING
    await settle(lambda: destination.state is StreamState.CLOSED)
    assert writers.last.written == [b"a", b"b"]
    assert writers.last.end_calls == 1
    assert readers.last.piped_to[0][1] is False


@pytest.mark.asyncio
async def test_pipe_with_end_false_leaves_destination_open(temp_dir, read_factory, write_factory):
    """Test: end=False never closes the destination."""
    writers = write_factory()
    source = ReadStream(temp_dir / "in.txt", handle_factory=read_factory(chunks=[b"a"]))
    destination = WriteStream(temp_dir / "out.txt", handle_factory=writers)
    await source.open()
    await destination.open()

    source.pipe(destination, end=False)

    await settle(lambda: source.state is StreamState.CLOSED)
    assert destination.state is StreamState.OPEN
    assert writers.last.end_calls == 0
    await destination.close()


@pytest.mark.asyncio
async def test_pipe_into_used_destination_is_not_connected(temp_dir, read_factory, write_factory):
    """Test: A destination that was already opened and closed is left alone; pipe() does not raise."""
    readers = read_factory(chunks=[b"a"])
    writers = write_factory()
    source = ReadStream(temp_dir / "in.txt", handle_factory=readers)
    destination = WriteStream(temp_dir / "out.txt", handle_factory=writers)
    await destination.open()
    await destination.close()
    await source.open()

    result = source.pipe(destination)

    assert result is destination
    assert readers.last.piped_to == []
    assert destination.state is StreamState.CLOSED
    assert len(writers.created) == 1


@pytest.mark.asyncio
async def test_source_errors_forwarded_to_destination(temp_dir, read_factory, write_factory):
    """Test: A source error is emitted as 'error' on the destination."""
    readers = read_factory()
    source = ReadStream(temp_dir / "in.txt", handle_factory=readers)
    destination = WriteStream(temp_dir / "out.txt", handle_factory=write_factory())
    forwarded = []
    destination.on("error", forwarded.append)
    source.on("error", lambda err: None)
    await source.open()
    await destination.open()

    source.pipe(destination, end=False)
    readers.last.events.emit("error", PermissionError(13, "denied"))

    assert len(forwarded) == 1
    assert forwarded[0].path == source.path


@pytest.mark.asyncio
async def test_backpressure_pauses_source(temp_dir, read_factory, write_factory):
    """Test: A saturated destination pauses the source until drain."""
    readers = read_factory(chunks=[b"1", b"2", b"3"])
    writers = write_factory(backpressure=True)
    source = ReadStream(temp_dir / "in.txt", handle_factory=readers)
    destination = WriteStream(temp_dir / "out.txt", handle_factory=writers)
    await source.open()
    await destination.open()

    source.pipe(destination, end=False)
    await asyncio.sleep(0.01)

    assert writers.last.written == [b"1"]
    assert readers.last.flowing is False

    writers.last.events.emit("drain")
    await asyncio.sleep(0.01)
    assert writers.last.written == [b"1", b"2"]


# ============================================================================
# GENERIC SINKS
# ============================================================================


@pytest.mark.asyncio
async def test_generic_sink_receives_data_and_end_once(temp_dir, read_factory):
    """Test: A GenericSink gets every chunk and exactly one end() call."""
    chunks = []
    ends = []
    sink = GenericSink(write=chunks.append, end=lambda: ends.append(True))
    source = ReadStream(temp_dir / "in.txt", handle_factory=read_factory(chunks=[b"x", b"y"]))
    await source.open()

    assert source.pipe(sink) is sink

    await settle(lambda: source.state is StreamState.CLOSED)
    assert chunks == [b"x", b"y"]
    assert ends == [True]


@pytest.mark.asyncio
async def test_generic_sink_end_false(temp_dir, read_factory):
    """Test: end=False never calls sink.end()."""
    ends = []
    sink = GenericSink(write=lambda chunk: None, end=lambda: ends.append(True))
    source = ReadStream(temp_dir / "in.txt", handle_factory=read_factory(chunks=[b"x"]))
    await source.open()

    source.pipe(sink, end=False)

    await settle(lambda: source.state is StreamState.CLOSED)
    assert ends == []


@pytest.mark.asyncio
async def test_generic_sink_error_forwarding(temp_dir, read_factory):
    """Test: Source errors reach sink.emit_error."""
    errors = []
    readers = read_factory()
    sink = GenericSink(write=lambda chunk: None, emit_error=errors.append)
    source = ReadStream(temp_dir / "in.txt", handle_factory=readers)
    source.on("error", lambda err: None)
    await source.open()

    source.pipe(sink)
    readers.last.events.emit("error", OSError(5, "I/O error"))

    assert len(errors) == 1


@pytest.mark.asyncio
async def test_generic_sink_backpressure_uses_on_drain(temp_dir, read_factory):
    """Test: write() returning False pauses until the sink's drain callback fires."""
    drains = []
    written = []

    def write(chunk):
        written.append(chunk)
        return False

    sink = GenericSink(write=write, on_drain=drains.append)
    readers = read_factory(chunks=[b"1", b"2"])
    source = ReadStream(temp_dir / "in.txt", handle_factory=readers)
    await source.open()

    source.pipe(sink, end=False)
    await asyncio.sleep(0.01)

    assert written == [b"1"]
    assert len(drains) == 1

    drains[0]()
    await asyncio.sleep(0.01)
    assert written == [b"1", b"2"]


def test_wrap_requires_write():
    """Test: GenericSink.wrap() needs an object with write()."""
    with pytest.raises(InvalidDestinationError):
        GenericSink.wrap(object())


# ============================================================================
# END TO END
# ============================================================================


@pytest.mark.asyncio
async def test_copy_file_through_pipe(temp_dir):
    """Test: Piping real handles copies the file and closes both ends."""
    source_path = temp_dir / "source.bin"
    target_path = temp_dir / "target.bin"
    payload = bytes(range(256)) * 40
    source_path.write_bytes(payload)

    source = ReadStream(source_path)
    destination = WriteStream(target_path)
    await source.open({"high_water_mark": 512})

    source.pipe(destination)

    await settle(lambda: destination.state is StreamState.CLOSED)
    await settle(lambda: source.state is StreamState.CLOSED)
    assert target_path.read_bytes() == payload


@pytest.mark.asyncio
async def test_pipe_into_bytesio(sample_file):
    """Test: GenericSink.wrap(BytesIO) collects the whole file."""
    buffer = io.BytesIO()
    source = ReadStream(sample_file)
    await source.open()

    source.pipe(GenericSink.wrap(buffer))

    await settle(lambda: source.state is StreamState.CLOSED)
    assert buffer.getvalue() == b"hello fylo\n"
