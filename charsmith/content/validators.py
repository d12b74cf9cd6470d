import json
from pathlib import Path
from typing import Iterator, Tuple

import jsonschema

SCHEMA_DIR = Path(__file__).resolve().parent.parent / "schemas"

RECORD_KINDS = (
    "race",
    "subrace",
    "class",
    "subclass",
    "feature",
    "background",
    "spell",
    "feat",
)


def load_schema(name: str) -> dict:
    with open(SCHEMA_DIR / f"{name}.json", encoding="utf-8") as f:
        return json.load(f)


SCHEMAS = {kind: load_schema(kind) for kind in RECORD_KINDS}
SCHEMAS["character"] = load_schema("character")


def iter_problems(kind: str, data: object) -> Iterator[Tuple[str, str]]:
    """Yield ``(json pointer, message)`` pairs, ordered by location in ``data``."""
    validator = jsonschema.Draft202012Validator(SCHEMAS[kind])
    for error in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.path]):
        yield "/" + "/".join(str(part) for part in error.path), error.message


def validate_record(kind: str, data: dict) -> None:
    """Raise ``jsonschema.ValidationError`` when ``data`` is not a usable ``kind`` record."""
    jsonschema.validate(data, SCHEMAS[kind])


def record_errors(kind: str, data: dict) -> list[str]:
    return [message for _, message in iter_problems(kind, data)]
