from __future__ import annotations


class CharsmithError(Exception):
    """Base class for errors raised by charsmith."""


class CatalogLookupError(CharsmithError, LookupError):
    """A catalog record requested by (name, source) does not exist."""

    def __init__(self, kind: str, name: str, source: str | None = None) -> None:
        self.kind = kind
        self.name = name
        self.source = source
        where = f" ({source})" if source else ""
        super().__init__(f"{kind} not found: {name}{where}")


class CharacterLoadError(CharsmithError, ValueError):
    """A character payload failed schema or model validation."""
