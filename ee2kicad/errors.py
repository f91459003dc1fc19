"""Error taxonomy for the EasyEDA to KiCad conversion engine.

Primitive-level errors (MalformedShape, UnsupportedPrimitive on decorative
kinds) drop one primitive and let the entity continue.  Entity-level errors
(NumberingCollision, UnitConversionError, UnsupportedPrimitive on structural
kinds) fail one entity and let the batch continue.  WriteError fails one
output file.
"""

from dataclasses import dataclass
from typing import Optional


class ConversionError(Exception):
    """Base class carrying enough context to diagnose without a re-run."""

    def __init__(self, message: str, entity: str = "", index: Optional[int] = None,
                 token: str = ""):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.index = index
        self.token = token

    def with_context(self, entity: str = None, index: int = None):
        """Fill in entity name / primitive index if not already known."""
        if entity is not None and not self.entity:
            self.entity = entity
        if index is not None and self.index is None:
            self.index = index
        return self

    def __str__(self):
        parts = []
        if self.entity:
            parts.append(f"[{self.entity}]")
        if self.index is not None:
            parts.append(f"shape #{self.index}:")
        parts.append(self.message)
        if self.token:
            token = self.token if len(self.token) <= 80 else self.token[:77] + "..."
            parts.append(f"(token: {token!r})")
        return " ".join(parts)


class MalformedShape(ConversionError):
    """Wrong field count or unparseable numeric field in one shape string."""


class UnsupportedPrimitive(ConversionError):
    """Unknown kind token, or a recognized kind with no KiCad counterpart."""

    def __init__(self, message: str, entity: str = "", index: Optional[int] = None,
                 token: str = "", structural: bool = False):
        super().__init__(message, entity, index, token)
        self.structural = structural


class NumberingCollision(ConversionError):
    """Two pins of a symbol, or two pads of a footprint, share a number."""


class UnitConversionError(ConversionError):
    """Non-finite or out-of-range coordinate, or a second normalization."""


class WriteError(ConversionError):
    """I/O failure while writing an output file atomically."""

    def __init__(self, message: str, path: str = "", entity: str = ""):
        super().__init__(message, entity=entity)
        self.path = path


class InputError(ConversionError):
    """Input record is unreadable or not a recognizable EasyEDA document."""


@dataclass
class ConversionWarning:
    """A recorded, non-fatal problem: something was dropped, never guessed."""
    entity: str = ""
    index: Optional[int] = None
    kind: str = ""
    message: str = ""
    token: str = ""

    @classmethod
    def from_error(cls, err: ConversionError, entity: str = ""):
        return cls(
            entity=err.entity or entity,
            index=err.index,
            kind=type(err).__name__,
            message=err.message,
            token=err.token,
        )

    def __str__(self):
        where = f"shape #{self.index}" if self.index is not None else "entity"
        return f"{self.entity}: {where}: {self.kind}: {self.message}"
