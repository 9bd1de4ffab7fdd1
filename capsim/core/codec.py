"""Line codec for the text bus.

A bus line is a sequence of space-delimited ASCII tokens: sender name,
message name, then the positional fields. Outbound lines are rendered from a
MessageTemplate; inbound lines are matched against a MessagePattern. A match
is total-or-none: the message name must be equal and the field count exact.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from capsim.core.constants import FORWARDED_SUFFIX
from capsim.core.errors import CodecError, ConfigurationError, MalformedMessage


class FieldType(Enum):
    UINT8 = "uint8"
    UINT16 = "uint16"
    UINT32 = "uint32"
    INT32 = "int32"
    FLOAT = "float"
    STRING = "string"

    @property
    def dtype(self):
        return _DTYPES.get(self)

    @property
    def is_integer(self) -> bool:
        return self.dtype is not None and np.issubdtype(self.dtype, np.integer)


_DTYPES = {
    FieldType.UINT8: np.uint8,
    FieldType.UINT16: np.uint16,
    FieldType.UINT32: np.uint32,
    FieldType.INT32: np.int32,
    FieldType.FLOAT: np.float32,
}


def integer_bounds(ftype: FieldType) -> Tuple[int, int]:
    if not ftype.is_integer:
        raise TypeError(f"{ftype.value} is not an integer field type")
    info = np.iinfo(ftype.dtype)
    return int(info.min), int(info.max)


def wrap(value: int, ftype: FieldType) -> int:
    """Wrap value into the declared width (modulo 2**bits)."""
    lo, hi = integer_bounds(ftype)
    return (int(value) - lo) % (hi - lo + 1) + lo


def saturate(value: int, ftype: FieldType) -> int:
    lo, hi = integer_bounds(ftype)
    return max(lo, min(hi, int(value)))


def render_value(value: Any, ftype: FieldType) -> str:
    if ftype is FieldType.STRING:
        token = str(value)
        if not token or any(c.isspace() for c in token):
            raise CodecError(f"string field must be a single token, got {token!r}")
        return token
    if ftype is FieldType.FLOAT:
        try:
            f = np.float32(value)
        except (TypeError, ValueError) as e:
            raise CodecError(f"not a float: {value!r}") from e
        # NaN means "not measured" and is a legal payload
        return "%f" % float(f)
    if isinstance(value, (float, np.floating)) and not float(value).is_integer():
        raise CodecError(f"{ftype.value} field got non-integral {value!r}")
    try:
        v = int(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise CodecError(f"{ftype.value} field got {value!r}") from e
    lo, hi = integer_bounds(ftype)
    if v < lo or v > hi:
        raise CodecError(f"{ftype.value} field out of range [{lo}, {hi}]: {v}")
    return str(v)


@dataclass(frozen=True)
class MessageTemplate:
    """Outbound message shape: name plus ordered (field name, type) slots."""
    name: str
    fields: Tuple[Tuple[str, FieldType], ...]

    def forwarded(self) -> "MessageTemplate":
        """Downlink variant: suffixed name and a leading aircraft-id token."""
        return MessageTemplate(
            name=self.name + FORWARDED_SUFFIX,
            fields=(("ac_id", FieldType.STRING),) + tuple(self.fields),
        )

    @property
    def field_names(self) -> List[str]:
        return [n for n, _ in self.fields]


def format_message(sender: str, template: MessageTemplate, values: Sequence[Any]) -> str:
    if len(values) != len(template.fields):
        raise CodecError(
            f"{template.name}: expected {len(template.fields)} values, got {len(values)}"
        )
    parts = [render_value(sender, FieldType.STRING), template.name]
    for v, (_, ftype) in zip(values, template.fields):
        parts.append(render_value(v, ftype))
    return " ".join(parts)


_PATTERN_RE = re.compile(r"^\^\(\\S\*\) (?P<name>[^\s()\\^$]+)(?P<slots>(?: \(\\S\*\))*)$")
_SLOT = r" (\S*)"


@dataclass(frozen=True)
class MessagePattern:
    name: str
    arity: int
    text: str

    @classmethod
    def from_name(cls, name: str, arity: int) -> "MessagePattern":
        return cls(name=name, arity=arity, text=r"^(\S*) " + name + _SLOT * arity)

    @classmethod
    def parse(cls, text: str) -> "MessagePattern":
        """Build a pattern from its raw text, e.g. ``^(\\S*) ATTITUDE (\\S*) (\\S*) (\\S*)``."""
        m = _PATTERN_RE.match(text.strip())
        if not m:
            raise ConfigurationError(f"unsupported message pattern: {text!r}")
        return cls(name=m.group("name"), arity=m.group("slots").count("("), text=text)

    def match(self, text: str) -> Optional[List[str]]:
        return match(self, text)


def split_line(text: str) -> Tuple[Optional[str], Optional[str], List[str]]:
    tokens = text.split()
    sender = tokens[0] if tokens else None
    name = tokens[1] if len(tokens) > 1 else None
    return sender, name, tokens[2:]


def match(pattern: MessagePattern, text: str) -> Optional[List[str]]:
    """Return the positional fields of text, or None if the name differs.

    Raises MalformedMessage when the name matches but the field count does not.
    """
    _, name, fields = split_line(text)
    if name != pattern.name:
        return None
    if len(fields) != pattern.arity:
        raise MalformedMessage(pattern.name, pattern.arity, len(fields))
    return fields
