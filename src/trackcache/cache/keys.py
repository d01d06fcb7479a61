"""Result-id schema for the client-side cache.

A result-id identifies one read by its full ordered argument list.

Format: {len_1}_{len_2}_..._{len_n}_{arg_1}_{arg_2}_..._{arg_n}

Where:
- len_i: byte length of argument i (UTF-8 for text arguments)
- arg_i: argument content, binary arguments rendered with surrogateescape

All lengths come before any content, so two argument lists that only
differ in where their content is split never share a result-id:
["ab", "c"] -> "2_1_ab_c" but ["a", "bc"] -> "1_2_a_bc".
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Union

Arg = Union[str, bytes, bytearray, memoryview, int, float]

SEPARATOR = "_"


def _to_bytes(arg: Arg) -> bytes:
    if isinstance(arg, bytes):
        return arg
    if isinstance(arg, (bytearray, memoryview)):
        return bytes(arg)
    if isinstance(arg, str):
        return arg.encode("utf-8", "surrogateescape")
    if isinstance(arg, (int, float)) and not isinstance(arg, bool):
        return repr(arg).encode("ascii")
    raise TypeError(
        f"Cannot derive a result-id from argument of type {type(arg).__name__}: "
        "expected str, bytes or a number"
    )


def _to_text(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def result_id(args: Iterable[Arg]) -> str:
    """Derive the result-id for an ordered argument list."""
    raw = [_to_bytes(arg) for arg in args]
    lengths = [str(len(part)) for part in raw]
    return SEPARATOR.join(lengths + [_to_text(part) for part in raw])


class ResultKeys:
    """Helpers for result-ids and the source keys they are indexed under."""

    SEPARATOR = SEPARATOR

    @classmethod
    def from_args(cls, args: Iterable[Arg]) -> str:
        """Result-id for a read's ordered arguments."""
        return result_id(args)

    @classmethod
    def source_key(cls, key: Arg) -> str:
        """Normalize a raw Redis key to the string used by the reverse index.

        Keys from reads and keys from invalidation pushes go through the
        same normalization, so b"user:1" and "user:1" index the same entry.
        """
        return _to_text(_to_bytes(key))

    @classmethod
    def parse(cls, value: str) -> list[str] | None:
        """Split a result-id back into its arguments.

        Returns None if the string isn't a well-formed result-id. Meant for
        logging and debugging; the cache itself never parses result-ids.
        """
        if value == "":
            return []

        raw = value.encode("utf-8", "surrogateescape")
        sep = cls.SEPARATOR.encode("ascii")
        parts = raw.split(sep)

        # The argument count isn't stored, so try each count until the
        # lengths account for exactly the content that follows them.
        for count in range(1, len(parts)):
            if not parts[count - 1].isdigit():
                return None
            lengths = [int(p) for p in parts[:count]]
            body = sep.join(parts[count:])
            if len(body) != sum(lengths) + count - 1:
                continue

            args: list[str] = []
            offset = 0
            for length in lengths:
                if offset and body[offset - 1 : offset] != sep:
                    break
                args.append(_to_text(body[offset : offset + length]))
                offset += length + 1
            else:
                return args
        return None


def source_keys(keys: Sequence[Arg]) -> tuple[str, ...]:
    """Normalize and de-duplicate source keys, keeping first-seen order."""
    return tuple(dict.fromkeys(ResultKeys.source_key(key) for key in keys))
