"""Render arbitrary payloads into the fixed, self-describing text layout.

Layout (each line newline-terminated)::

    Type: <module>.<qualname>
    Value: 42                         # int / bool / float / enum
    Value: 2024-01-02 03:04:05        # date, time, Decimal, UUID, Path: str()

    Type: builtins.str
    IsNull: No
    Length: 3
    Value: "Ada"

    Type: app.User                    # composites, one block per member
      Property Name: name
      Type: builtins.str
      IsNull: No
      Length: 3
      Value: "Ada"
    <blank line>

Member blocks are indented two spaces per nesting level, starting at two.
"""

import dataclasses
import datetime
import decimal
import enum
import functools
import json
import math
import pathlib
import uuid
from collections.abc import Iterable, Iterator, Mapping
from typing import Protocol, runtime_checkable

from observer.errors import NullMemberError

DEFAULT_EXCLUDED_MEMBERS = frozenset({"Chars", "Length"})
DEFAULT_MAX_DEPTH = 32

START_DEPTH = 2
INDENT_STEP = 2

CYCLE_SENTINEL = "<cyclic reference>"
DEPTH_SENTINEL = "<max depth exceeded>"

SCALAR_TYPES = (bool, int, float, enum.Enum)

# Rendered through str() on one line, both structurally and encoded
VALUE_TYPES = (
    datetime.date,
    datetime.time,
    datetime.timedelta,
    decimal.Decimal,
    uuid.UUID,
    pathlib.PurePath,
)


class RenderMode(enum.Enum):
    STRUCTURAL = "structural"
    ENCODED = "encoded"

    @classmethod
    def parse(cls, value: "str | RenderMode") -> "RenderMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown render mode: {value!r}") from None


class NullMemberMode(enum.Enum):
    RAISE = "raise"
    EMPTY = "empty"


class _Kind(enum.Enum):
    SCALAR = "scalar"
    STRING = "string"
    COMPOSITE = "composite"


@runtime_checkable
class Describable(Protocol):
    """Types that list their own members instead of being introspected."""

    def __describe__(self) -> Iterable[tuple[str, object]]:
        ...


def type_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def _kind_of(cls: type) -> _Kind:
    if issubclass(cls, str):
        return _Kind.STRING
    if issubclass(cls, SCALAR_TYPES) or issubclass(cls, VALUE_TYPES):
        return _Kind.SCALAR
    return _Kind.COMPOSITE


def _property_names(cls: type) -> list[str]:
    """Public properties, base classes first, each in declaration order."""
    names: list[str] = []
    for klass in reversed(cls.__mro__):
        for name, attr in vars(klass).items():
            if name.startswith("_") or name in names:
                continue
            if isinstance(attr, (property, functools.cached_property)):
                names.append(name)
    return names


def _field_names(obj: object) -> list[str]:
    """Public data fields: dataclass fields, else slots then instance dict."""
    if dataclasses.is_dataclass(obj):
        candidates = [f.name for f in dataclasses.fields(obj)]
    else:
        candidates = []
        for klass in reversed(type(obj).__mro__):
            slots = vars(klass).get("__slots__", ())
            if isinstance(slots, str):
                slots = (slots,)
            for slot in slots:
                # Unset slots raise AttributeError on access
                if hasattr(obj, slot):
                    candidates.append(slot)
        candidates.extend(getattr(obj, "__dict__", {}))

    names: list[str] = []
    for name in candidates:
        if not name.startswith("_") and name not in names:
            names.append(name)
    return names


def iter_members(obj: object) -> Iterator[tuple[str, object]]:
    """Yield ``(name, value)`` for every publicly readable member of *obj*.

    The order is stable: a ``__describe__`` implementation is followed as-is;
    mappings yield their keys, sequences yield ``[i]`` items; any other
    object yields its properties first and then its fields.
    """
    if isinstance(obj, Describable):
        yield from obj.__describe__()
        return
    if isinstance(obj, Mapping):
        for key, value in obj.items():
            yield str(key), value
        return
    if isinstance(obj, (list, tuple)):
        for index, value in enumerate(obj):
            yield f"[{index}]", value
        return
    if isinstance(obj, (set, frozenset)):
        for index, value in enumerate(sorted(obj, key=repr)):
            yield f"[{index}]", value
        return

    properties = _property_names(type(obj))
    for name in properties:
        yield name, getattr(obj, name)
    for name in _field_names(obj):
        if name not in properties:
            yield name, getattr(obj, name)


class Serializer:
    """Type-driven renderer for log payloads.

    Args:
        mode: STRUCTURAL walks composite members into indented blocks;
            ENCODED embeds composites as one compact JSON ``Value:`` line.
        excluded_members: member names never emitted.
        null_members: RAISE propagates NullMemberError for None members;
            EMPTY emits the member with ``Type: builtins.NoneType`` and no body.
        max_depth: composite nesting level at which walking stops.
    """

    def __init__(
        self,
        mode: RenderMode = RenderMode.STRUCTURAL,
        excluded_members: Iterable[str] = DEFAULT_EXCLUDED_MEMBERS,
        null_members: NullMemberMode = NullMemberMode.RAISE,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        if max_depth < 1:
            raise ValueError(f"max_depth must be positive, got {max_depth}")
        self.mode = mode
        self.excluded_members = frozenset(excluded_members)
        self.null_members = null_members
        self.max_depth = max_depth

    def render(self, payload: object, declared_type: type | None = None) -> str:
        """Render *payload* as text.

        *declared_type* selects the header and the rendering kind; it
        defaults to the payload's runtime type. ``render(None, str)``
        renders a null string.
        """
        cls = declared_type if declared_type is not None else type(payload)
        lines = [f"Type: {type_name(cls)}"]
        kind = _kind_of(cls)

        if kind is _Kind.SCALAR:
            lines.append(f"Value: {payload}")
        elif kind is _Kind.STRING:
            self._string_body(lines, payload, "")
        elif payload is None:
            if self.null_members is NullMemberMode.RAISE:
                raise NullMemberError("payload")
        elif self.mode is RenderMode.ENCODED:
            encoded = self._encode(payload, set())
            lines.append(
                "Value: " + json.dumps(
                    encoded, separators=(",", ":"), ensure_ascii=False, allow_nan=False,
                )
            )
        else:
            self._walk(lines, payload, START_DEPTH, {id(payload)})

        return "\n".join(lines) + "\n"

    @staticmethod
    def _string_body(lines: list[str], value: str | None, pad: str):
        lines.append(f"{pad}IsNull: {'Yes' if value is None else 'No'}")
        lines.append(f"{pad}Length: {'' if value is None else len(value)}")
        lines.append(f'{pad}Value: "{"" if value is None else value}"')

    def _walk(self, lines: list[str], obj: object, depth: int, path: set[int]):
        pad = " " * depth
        for name, value in iter_members(obj):
            if name in self.excluded_members:
                continue

            if value is None:
                if self.null_members is NullMemberMode.RAISE:
                    raise NullMemberError(name)
                lines.append(f"{pad}Property Name: {name}")
                lines.append(f"{pad}Type: {type_name(type(None))}")
                lines.append("")
                continue

            cls = type(value)
            lines.append(f"{pad}Property Name: {name}")
            lines.append(f"{pad}Type: {type_name(cls)}")

            kind = _kind_of(cls)
            if kind is _Kind.SCALAR:
                lines.append(f"{pad}Value: {value}")
            elif kind is _Kind.STRING:
                self._string_body(lines, value, pad)
            elif id(value) in path:
                lines.append(f"{pad}Value: {CYCLE_SENTINEL}")
            elif len(path) >= self.max_depth:
                lines.append(f"{pad}Value: {DEPTH_SENTINEL}")
            else:
                path.add(id(value))
                try:
                    self._walk(lines, value, depth + INDENT_STEP, path)
                finally:
                    path.discard(id(value))

            lines.append("")

    def _encode(self, value: object, path: set[int]):
        """Convert *value* into JSON-compatible data using the member walk."""
        if isinstance(value, float) and not math.isfinite(value):
            return str(value)
        if value is None or isinstance(value, (str, bool, int, float)):
            return value
        if isinstance(value, (enum.Enum,) + VALUE_TYPES):
            return str(value)
        if id(value) in path:
            return CYCLE_SENTINEL
        if len(path) >= self.max_depth:
            return DEPTH_SENTINEL

        path.add(id(value))
        try:
            if isinstance(value, (list, tuple, set, frozenset)):
                return [self._encode(item, path) for _, item in iter_members(value)]
            return {
                name: self._encode(member, path)
                for name, member in iter_members(value)
                if name not in self.excluded_members
            }
        finally:
            path.discard(id(value))


_default_serializer = Serializer()


def render(payload: object, declared_type: type | None = None) -> str:
    """Render with the default structural serializer."""
    return _default_serializer.render(payload, declared_type)
