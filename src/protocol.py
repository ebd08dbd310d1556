"""RESP2 value model, streaming decoder and encoder.

``decode`` works on a connection buffer that may hold nothing, part of a
frame, or a frame followed by the start of the next one. It reports the three
outcomes separately:

* ``None``: the buffer is a (possibly empty) prefix of a valid frame.
* ``(value, consumed)``: one complete frame spanning ``consumed`` bytes.
* a :class:`ProtocolError` subclass: the bytes can never form a valid frame.

Bulk string payloads are carried as ``str`` decoded with ``surrogateescape``,
so arbitrary bytes survive a decode/encode cycle unchanged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

CRLF = b"\r\n"
ENCODING = "utf-8"
ENCODING_ERRORS = "surrogateescape"

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_INTEGER_RE = re.compile(rb"[+-]?[0-9]+")


class ProtocolError(ValueError):
    """Input that can never become a valid RESP frame."""


class UnknownType(ProtocolError):
    pass


class InvalidInteger(ProtocolError):
    pass


class MalformedBulkString(ProtocolError):
    pass


class MalformedFrame(ProtocolError):
    pass


class LimitExceeded(ProtocolError):
    pass


def _check_line(text: str, kind: str) -> None:
    if "\r" in text or "\n" in text:
        raise ValueError(f"{kind} must not contain CR or LF: {text!r}")


@dataclass(frozen=True)
class SimpleString:
    value: str

    def __post_init__(self) -> None:
        _check_line(self.value, "simple string")


@dataclass(frozen=True)
class BulkString:
    value: Optional[str]


@dataclass(frozen=True)
class RESPArray:
    items: Optional[tuple[Any, ...]]


@dataclass(frozen=True)
class RESPError:
    message: str

    def __post_init__(self) -> None:
        _check_line(self.message, "error message")


RESPValue = SimpleString | BulkString | RESPArray | RESPError | int

NULL_BULK = BulkString(None)
NULL_ARRAY = RESPArray(None)

# "-9223372036854775808"
_MAX_INTEGER_LINE = 20


@dataclass(frozen=True)
class DecodeLimits:
    """Bounds applied to untrusted input before any work is done for it."""

    max_depth: int = 32
    max_elements: int = 1_000_000
    max_bulk_length: int = 512 * 1024 * 1024
    max_line_length: int = 64 * 1024

    def __post_init__(self) -> None:
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be at least 1, got {self.max_depth}")
        if self.max_elements < 0:
            raise ValueError(f"max_elements must not be negative, got {self.max_elements}")
        if self.max_bulk_length < 0:
            raise ValueError(f"max_bulk_length must not be negative, got {self.max_bulk_length}")
        if self.max_line_length < _MAX_INTEGER_LINE:
            raise ValueError(
                f"max_line_length must be at least {_MAX_INTEGER_LINE}, got {self.max_line_length}"
            )


DEFAULT_LIMITS = DecodeLimits()

Parsed = Optional[tuple[RESPValue, int]]

_ARRAY_PREFIX = ord("*")


class Decoder:
    """Incremental decoder for one connection's byte stream.

    Bytes are appended with :meth:`feed` and complete frames taken out with
    :meth:`next_frame`. Array elements that are already decoded are kept
    between calls, so each byte of a large request is parsed once no matter
    how many reads it arrives in.
    """

    def __init__(self, limits: DecodeLimits = DEFAULT_LIMITS) -> None:
        self.limits = limits
        self._buf = bytearray()
        # First byte of the frame being decoded, and of the next element.
        self._start = 0
        self._pos = 0
        # (declared count, items so far) for each open array, outermost first.
        self._arrays: list[tuple[int, list[RESPValue]]] = []

    def __len__(self) -> int:
        return len(self._buf) - self._start

    def feed(self, data: bytes | bytearray) -> None:
        if self._start:
            del self._buf[: self._start]
            self._pos -= self._start
            self._start = 0
        self._buf += data

    def reset(self) -> None:
        """Drop buffered bytes and any partially decoded frame."""
        self._buf.clear()
        self._start = self._pos = 0
        self._arrays.clear()

    def next_frame(self) -> Parsed:
        """Take the next complete frame out of the buffer.

        Returns ``None`` if more bytes are needed, otherwise the value and the
        number of bytes it occupied. Raises :class:`ProtocolError` on
        malformed input; call :meth:`reset` before reusing the decoder.
        """
        data = self._buf

        while True:
            if self._pos >= len(data):
                return None

            if data[self._pos] == _ARRAY_PREFIX:
                header = _parse_array_header(data, self._pos + 1, len(self._arrays), self.limits)
                if header is None:
                    return None
                count, self._pos = header
                if count > 0:
                    self._arrays.append((count, []))
                    continue
                value: RESPValue = NULL_ARRAY if count < 0 else RESPArray(())
            else:
                parsed = _parse_value(data, self._pos, self.limits)
                if parsed is None:
                    return None
                value, self._pos = parsed

            while self._arrays:
                count, items = self._arrays[-1]
                items.append(value)
                if len(items) < count:
                    break
                self._arrays.pop()
                value = RESPArray(tuple(items))
            else:
                size = self._pos - self._start
                self._start = self._pos
                return value, size


def decode(data: bytes | bytearray, limits: DecodeLimits = DEFAULT_LIMITS) -> Parsed:
    """Decode the frame at the start of ``data``.

    Returns ``None`` if more bytes are needed, otherwise the value and the
    number of bytes it occupies. Raises :class:`ProtocolError` on malformed
    input.
    """
    decoder = Decoder(limits)
    decoder.feed(data)
    return decoder.next_frame()


def _parse_value(data: bytearray, pos: int, limits: DecodeLimits) -> Parsed:
    prefix = chr(data[pos])

    match prefix:
        case "+":
            return _parse_simple_string(data, pos + 1, limits)
        case "-":
            return _parse_error(data, pos + 1, limits)
        case ":":
            return _parse_integer(data, pos + 1, limits)
        case "$":
            return _parse_bulk_string(data, pos + 1, limits)
        case _:
            raise UnknownType(f"unknown type prefix {prefix!r}")


def _read_line(data: bytearray, pos: int, limits: DecodeLimits) -> Optional[tuple[bytes, int]]:
    idx = data.find(CRLF, pos, pos + limits.max_line_length + 2)

    if idx == -1:
        # One extra byte may be the CR of a line that is exactly at the limit.
        if len(data) - pos > limits.max_line_length + 1:
            raise LimitExceeded(f"line longer than {limits.max_line_length} bytes")
        return None

    return bytes(data[pos:idx]), idx + 2


def _parse_int(line: bytes, what: str) -> int:
    if len(line) > _MAX_INTEGER_LINE or not _INTEGER_RE.fullmatch(line):
        raise InvalidInteger(f"invalid {what} {line[:_MAX_INTEGER_LINE]!r}")

    n = int(line)
    if not INT64_MIN <= n <= INT64_MAX:
        raise InvalidInteger(f"{what} out of range {line!r}")

    return n


def _text_line(line: bytes) -> str:
    # A lone CR or LF can only come before the terminating CRLF.
    if b"\r" in line or b"\n" in line:
        raise MalformedFrame(f"line contains a bare CR or LF {line[:64]!r}")
    return line.decode(ENCODING, ENCODING_ERRORS)


def _parse_simple_string(data: bytearray, pos: int, limits: DecodeLimits) -> Parsed:
    line = _read_line(data, pos, limits)
    if line is None:
        return None
    raw, end = line
    return SimpleString(_text_line(raw)), end


def _parse_error(data: bytearray, pos: int, limits: DecodeLimits) -> Parsed:
    line = _read_line(data, pos, limits)
    if line is None:
        return None
    raw, end = line
    return RESPError(_text_line(raw)), end


def _parse_integer(data: bytearray, pos: int, limits: DecodeLimits) -> Parsed:
    line = _read_line(data, pos, limits)
    if line is None:
        return None
    raw, end = line
    return _parse_int(raw, "integer"), end


def _parse_bulk_string(data: bytearray, pos: int, limits: DecodeLimits) -> Parsed:
    line = _read_line(data, pos, limits)
    if line is None:
        return None

    raw, start = line
    length = _parse_int(raw, "bulk string length")

    if length < 0:
        return NULL_BULK, start

    if length > limits.max_bulk_length:
        raise LimitExceeded(f"bulk string length {length} exceeds {limits.max_bulk_length}")

    end = start + length
    trailer = data[end : end + 2]

    # Reject a wrong terminator as soon as any of it has arrived.
    if trailer != CRLF[: len(trailer)]:
        raise MalformedBulkString(f"expected CRLF after {length}-byte bulk string payload")

    if len(trailer) < 2:
        return None

    return BulkString(bytes(data[start:end]).decode(ENCODING, ENCODING_ERRORS)), end + 2


def _parse_array_header(
    data: bytearray, pos: int, depth: int, limits: DecodeLimits
) -> Optional[tuple[int, int]]:
    if depth >= limits.max_depth:
        raise LimitExceeded(f"array nesting exceeds {limits.max_depth}")

    line = _read_line(data, pos, limits)
    if line is None:
        return None

    raw, end = line
    count = _parse_int(raw, "array length")

    if count > limits.max_elements:
        raise LimitExceeded(f"array length {count} exceeds {limits.max_elements}")

    return count, end


def _encode_text(text: str) -> bytes:
    return text.encode(ENCODING, ENCODING_ERRORS)


def encode(value: RESPValue) -> bytes:
    match value:
        case SimpleString(v):
            return b"+" + _encode_text(v) + CRLF
        case RESPError(msg):
            return b"-" + _encode_text(msg) + CRLF
        case int(n):
            return b":%d\r\n" % n
        case BulkString(None):
            return b"$-1\r\n"
        case BulkString(v):
            payload = _encode_text(v)  # type: ignore[arg-type]
            return b"$%d\r\n%s\r\n" % (len(payload), payload)
        case RESPArray(None):
            return b"*-1\r\n"
        case RESPArray(items):
            parts = [b"*%d\r\n" % len(items)]  # type: ignore[arg-type]
            parts += [encode(i) for i in items]  # type: ignore[union-attr]
            return b"".join(parts)
        case _:
            raise TypeError(f"Cannot encode {type(value)}")
