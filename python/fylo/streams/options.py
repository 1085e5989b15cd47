"""
Stream option models and validation.

Validation happens before any native resource is created; every failure is
a ValidationError with a descriptive message.
"""

import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping, Optional, Union

from fylo.errors import ValidationError
from fylo.streams.encodings import SUPPORTED_ENCODINGS, is_supported

ALLOWED_FLAGS = frozenset({"r", "r+", "rs", "rs+", "w", "wx", "w+", "wx+", "a", "ax", "a+", "ax+"})
READ_FLAGS = frozenset({"r", "r+", "rs", "rs+", "w+", "wx+", "a+", "ax+"})

# flag -> (os.open flags, Python mode string for the file object)
_FLAG_TABLE = {
    "r": (os.O_RDONLY, "rb"),
    "rs": (os.O_RDONLY | getattr(os, "O_SYNC", 0), "rb"),
    "r+": (os.O_RDWR, "r+b"),
    "rs+": (os.O_RDWR | getattr(os, "O_SYNC", 0), "r+b"),
    "w": (os.O_WRONLY | os.O_CREAT | os.O_TRUNC, "wb"),
    "wx": (os.O_WRONLY | os.O_CREAT | os.O_TRUNC | os.O_EXCL, "wb"),
    "w+": (os.O_RDWR | os.O_CREAT | os.O_TRUNC, "w+b"),
    "wx+": (os.O_RDWR | os.O_CREAT | os.O_TRUNC | os.O_EXCL, "w+b"),
    "a": (os.O_WRONLY | os.O_CREAT | os.O_APPEND, "ab"),
    "ax": (os.O_WRONLY | os.O_CREAT | os.O_APPEND | os.O_EXCL, "ab"),
    "a+": (os.O_RDWR | os.O_CREAT | os.O_APPEND, "a+b"),
    "ax+": (os.O_RDWR | os.O_CREAT | os.O_APPEND | os.O_EXCL, "a+b"),
}


def open_spec(flags: str) -> tuple[int, str]:
    """Return (os flags, file mode) for a stream flag string."""
    return _FLAG_TABLE[flags]


@dataclass
class WriteStreamOptions:
    flags: str = "w"
    encoding: str = "utf8"
    mode: int = 0o666
    start: Optional[int] = None
    high_water_mark: Optional[int] = None
    auto_close: bool = True
    emit_close: bool = True
    flush: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReadStreamOptions:
    flags: str = "r"
    encoding: Optional[str] = None
    high_water_mark: Optional[int] = None
    start: Optional[int] = None
    end: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_CAMEL_CASE = {
    "highWaterMark": "high_water_mark",
    "autoClose": "auto_close",
    "emitClose": "emit_close",
}

OptionsInput = Union[None, str, Mapping[str, Any], WriteStreamOptions, ReadStreamOptions]


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _encoding_error(value: Any) -> ValidationError:
    allowed = ", ".join(sorted(SUPPORTED_ENCODINGS))
    return ValidationError(f"Invalid encoding: {value}. Allowed encodings are: {allowed}.")


def _as_mapping(options: OptionsInput, model: type) -> dict[str, Any]:
    if options is None:
        return {}
    if isinstance(options, str):
        # Bare string is shorthand for the encoding
        if not is_supported(options):
            raise _encoding_error(options)
        return {"encoding": options}
    if isinstance(options, model):
        return {k: v for k, v in options.to_dict().items() if v is not None}
    if not isinstance(options, Mapping):
        raise ValidationError("Options must be a non-null mapping.")

    known = {f.name for f in fields(model)}
    result: dict[str, Any] = {}
    for key, value in options.items():
        name = _CAMEL_CASE.get(key, key)
        if name not in known:
            raise ValidationError(f"Unknown option: {key}.")
        if value is not None:
            result[name] = value
    return result


def validate_write_options(options: OptionsInput = None) -> WriteStreamOptions:
    """
    Validate write stream options.

    Accepts None, an encoding string, a mapping (snake_case or camelCase
    keys) or a WriteStreamOptions instance.

    Raises:
        ValidationError: On an unknown key or a value of the wrong type
    """
    values = _as_mapping(options, WriteStreamOptions)

    flags = values.get("flags")
    if flags is not None and flags not in ALLOWED_FLAGS:
        raise ValidationError(
            f"Invalid flag: {flags}. Allowed flags are: {', '.join(sorted(ALLOWED_FLAGS))}."
        )

    encoding = values.get("encoding")
    if encoding is not None and not is_supported(encoding):
        raise _encoding_error(encoding)

    for name in ("mode", "start", "high_water_mark"):
        value = values.get(name)
        if value is not None and not _is_integer(value):
            raise ValidationError(f"Invalid {name}: {value!r}. It must be an integer.")

    for name in ("auto_close", "emit_close", "flush"):
        value = values.get(name)
        if value is not None and not isinstance(value, bool):
            raise ValidationError(f"Invalid {name}: {value!r}. It must be a boolean.")

    if values.get("start") is not None and values["start"] < 0:
        raise ValidationError(f"Invalid start: {values['start']}. It must be >= 0.")
    if values.get("high_water_mark") is not None and values["high_water_mark"] <= 0:
        raise ValidationError(f"Invalid high_water_mark: {values['high_water_mark']}. It must be > 0.")

    return WriteStreamOptions(**values)


def validate_read_options(options: OptionsInput = None) -> ReadStreamOptions:
    """
    Validate read stream options.

    Raises:
        ValidationError: On an unknown key or a value of the wrong type
    """
    values = _as_mapping(options, ReadStreamOptions)

    hwm = values.get("high_water_mark")
    if hwm is not None and (not _is_integer(hwm) or hwm <= 0):
        raise ValidationError(f"Invalid high_water_mark value: {hwm!r}.")

    encoding = values.get("encoding")
    if encoding is not None:
        if not isinstance(encoding, str):
            raise ValidationError(f"Invalid encoding value: {encoding!r}.")
        if not is_supported(encoding):
            raise _encoding_error(encoding)

    flags = values.get("flags")
    if flags is not None and flags not in READ_FLAGS:
        raise ValidationError(
            f"Invalid flag: {flags}. Allowed read flags are: {', '.join(sorted(READ_FLAGS))}."
        )

    for name in ("start", "end"):
        value = values.get(name)
        if value is not None and (not _is_integer(value) or value < 0):
            raise ValidationError(f"Invalid {name}: {value!r}. It must be a non-negative integer.")

    if values.get("start") is not None and values.get("end") is not None and values["start"] > values["end"]:
        raise ValidationError(f"Invalid range: start ({values['start']}) is greater than end ({values['end']}).")

    return ReadStreamOptions(**values)
