"""
Tests for stream option validation and chunk encodings.
"""

import os

import pytest

from fylo.errors import ValidationError
from fylo.streams.encodings import ChunkDecoder, is_supported, to_bytes
from fylo.streams.options import (
    ReadStreamOptions,
    WriteStreamOptions,
    open_spec,
    validate_read_options,
    validate_write_options,
)


# ============================================================================
# WRITE OPTIONS
# ============================================================================


def test_write_defaults():
    """Test: No options means truncate-and-write utf8 with auto close."""
    options = validate_write_options()

    assert options == WriteStreamOptions()
    assert options.flags == "w"
    assert options.encoding == "utf8"
    assert options.auto_close and options.emit_close and not options.flush


def test_write_string_is_encoding_shorthand():
    """Test: A bare string selects the encoding."""
    assert validate_write_options("latin1").encoding == "latin1"


def test_write_camel_case_keys():
    """Test: camelCase keys map onto the option fields."""
    options = validate_write_options({"highWaterMark": 8, "autoClose": False, "emitClose": False})

    assert options.high_water_mark == 8
    assert options.auto_close is False
    assert options.emit_close is False


@pytest.mark.parametrize(
    "options, message",
    [
        ({"flags": "q"}, "Invalid flag"),
        ({"encoding": "ebcdic"}, "Invalid encoding"),
        ({"mode": "rw"}, "Invalid mode"),
        ({"start": -1}, "Invalid start"),
        ({"high_water_mark": 0}, "Invalid high_water_mark"),
        ({"high_water_mark": 4.0}, "must be an integer"),
        ({"start": 1.5}, "must be an integer"),
        ({"mode": 0.5}, "must be an integer"),
        ({"start": True}, "must be an integer"),
        ({"auto_close": 1}, "Invalid auto_close"),
        ({"bogus": 1}, "Unknown option"),
        (42, "non-null mapping"),
    ],
)
def test_write_validation_errors(options, message):
    """Test: Each invalid write option is reported with its own message."""
    with pytest.raises(ValidationError, match=message):
        validate_write_options(options)


def test_write_instance_passes_through():
    """Test: A WriteStreamOptions instance is validated and copied."""
    original = WriteStreamOptions(flags="a", start=3)

    options = validate_write_options(original)

    assert options == original
    assert options is not original


# ============================================================================
# READ OPTIONS
# ============================================================================


def test_read_defaults():
    """Test: Read defaults produce raw bytes from the whole file."""
    options = validate_read_options(None)

    assert options == ReadStreamOptions()
    assert options.encoding is None


@pytest.mark.parametrize("flags", ["r", "r+", "rs", "rs+", "w+", "wx+", "a+", "ax+"])
def test_read_accepts_readable_flags(flags):
    """Test: Every readable flag is accepted."""
    assert validate_read_options({"flags": flags}).flags == flags


@pytest.mark.parametrize("flags", ["w", "wx", "a", "ax"])
def test_read_rejects_write_only_flags(flags):
    """Test: Write-only flags are rejected for read streams."""
    with pytest.raises(ValidationError, match="read flags"):
        validate_read_options({"flags": flags})


def test_read_range_must_be_ordered():
    """Test: start greater than end is rejected; start == end is a one-byte range."""
    with pytest.raises(ValidationError, match="Invalid range"):
        validate_read_options({"start": 5, "end": 4})

    assert validate_read_options({"start": 4, "end": 4}).end == 4


def test_open_spec_creates_for_write_flags():
    """Test: Flag strings map to os.open flags and binary file modes."""
    write_flags, write_mode = open_spec("w")
    read_flags, read_mode = open_spec("r")

    assert write_flags & os.O_CREAT and write_flags & os.O_TRUNC
    assert write_mode == "wb"
    assert not read_flags & os.O_CREAT
    assert read_mode == "rb"
    assert open_spec("ax")[0] & os.O_EXCL


# ============================================================================
# ENCODINGS
# ============================================================================


@pytest.mark.parametrize("name", ["utf8", "UTF8", "hex", "base64", "base64url", "ucs2", "binary"])
def test_supported_encodings(name):
    """Test: Known encoding names are supported case-insensitively."""
    assert is_supported(name)


@pytest.mark.parametrize("name", ["utf32", "", None, 8])
def test_unsupported_encodings(name):
    """Test: Unknown names and non-strings are unsupported."""
    assert not is_supported(name)


@pytest.mark.parametrize(
    "chunk, encoding, expected",
    [
        ("héllo", "utf8", "héllo".encode("utf-8")),
        ("héllo", "latin1", "héllo".encode("latin-1")),
        ("00ff10", "hex", b"\x00\xff\x10"),
        ("aGk", "base64", b"hi"),
        ("-_8", "base64url", b"\xfb\xff"),
        (b"raw", "hex", b"raw"),
    ],
)
def test_to_bytes(chunk, encoding, expected):
    """Test: str chunks are converted with the stream encoding; bytes pass through."""
    assert to_bytes(chunk, encoding) == expected


def test_to_bytes_rejects_other_types():
    """Test: Only bytes-like and str chunks are writable."""
    with pytest.raises(TypeError):
        to_bytes(123)


def test_decoder_carries_split_characters():
    """Test: A multi-byte character split across chunks is decoded once complete."""
    data = "✓".encode("utf-8")
    decoder = ChunkDecoder("utf8")

    assert decoder.decode(data[:1]) == ""
    assert decoder.decode(data[1:]) == "✓"


def test_decoder_base64_groups():
    """Test: base64 output only covers complete 3-byte groups until the final chunk."""
    decoder = ChunkDecoder("base64")

    text = decoder.decode(b"abcd") + decoder.decode(b"e") + decoder.decode(b"", final=True)

    assert text == "YWJj" + "ZGU="
