"""Composite resource identifiers.

Some remote resources have no id of their own: a database is addressed by
``instance_id`` plus ``db_name``, an ACL by seven fields. Resource managers
persist such resources under a single token built by joining the parts with
a reserved delimiter, and decode it again on every lookup.

Example:
    >>> codec = CompositeIdCodec("#")
    >>> codec.encode(["mssql-1x2y", "orders"])
    'mssql-1x2y#orders'
    >>> codec.decode("mssql-1x2y#orders", 2)
    ['mssql-1x2y', 'orders']

    Named layouts check the arity once, in one place:

    >>> DB_ID = IdLayout("sqlserver_db", ("instance_id", "db_name"))
    >>> DB_ID.decode("mssql-1x2y#orders")
    {'instance_id': 'mssql-1x2y', 'db_name': 'orders'}
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from converge.core.errors import MalformedIdentifierError

FIELD_DELIMITER = "#"
COMMA_DELIMITER = ","


@dataclass(frozen=True)
class CompositeIdCodec:
    """Joins and splits identifier parts on a reserved delimiter."""

    delimiter: str = FIELD_DELIMITER

    def __post_init__(self):
        if not self.delimiter:
            raise ValueError("delimiter must not be empty")

    def encode(self, parts: Sequence[str]) -> str:
        """Join ``parts`` into one token.

        Raises:
            MalformedIdentifierError: no parts, or a part contains the delimiter
        """
        if isinstance(parts, str):
            raise TypeError("parts must be a sequence of strings, not a string")
        if len(parts) == 0:
            raise MalformedIdentifierError("cannot encode an identifier with no parts")
        for index, part in enumerate(parts):
            if self.delimiter in part:
                raise MalformedIdentifierError(
                    f"identifier part {index} ({part!r}) contains reserved delimiter {self.delimiter!r}"
                )
        return self.delimiter.join(parts)

    def decode(self, token: str, expected_arity: int) -> list[str]:
        """Split ``token`` and check it has exactly ``expected_arity`` parts.

        Raises:
            MalformedIdentifierError: part count differs from ``expected_arity``
        """
        if expected_arity < 1:
            raise ValueError(f"expected_arity must be >= 1, got {expected_arity}")
        parts = token.split(self.delimiter)
        if len(parts) != expected_arity:
            raise MalformedIdentifierError(
                f"identifier {token!r} has {len(parts)} parts, expected {expected_arity}",
                identifier=token,
            )
        return parts


FIELD_CODEC = CompositeIdCodec(FIELD_DELIMITER)
COMMA_CODEC = CompositeIdCodec(COMMA_DELIMITER)


@dataclass(frozen=True)
class IdLayout:
    """A named composite id layout for one resource kind.

    Attributes:
        kind: Resource kind, used in error messages
        fields: Ordered field names; the arity is ``len(fields)``
        codec: Codec to join/split with
    """

    kind: str
    fields: tuple[str, ...]
    codec: CompositeIdCodec = field(default=FIELD_CODEC)

    @property
    def arity(self) -> int:
        return len(self.fields)

    def encode(self, **values: str) -> str:
        missing = [name for name in self.fields if name not in values]
        if missing:
            raise MalformedIdentifierError(f"{self.kind} id is missing fields: {', '.join(missing)}")
        unknown = sorted(set(values) - set(self.fields))
        if unknown:
            raise MalformedIdentifierError(f"{self.kind} id has unknown fields: {', '.join(unknown)}")
        return self.codec.encode([values[name] for name in self.fields])

    def decode(self, token: str) -> dict[str, str]:
        try:
            parts = self.codec.decode(token, self.arity)
        except MalformedIdentifierError as e:
            raise MalformedIdentifierError(
                f"id of {self.kind} is wrong: {e.message}", identifier=token
            ) from e
        return dict(zip(self.fields, parts))


__all__ = [
    "COMMA_CODEC",
    "COMMA_DELIMITER",
    "CompositeIdCodec",
    "FIELD_CODEC",
    "FIELD_DELIMITER",
    "IdLayout",
]
