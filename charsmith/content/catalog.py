"""Read-only catalog of race, class, background, spell and feat records.

The catalog is built once from collections that an external loader already
parsed (5etools-style dictionaries) and is then passed explicitly to every
engine function.  Records that fail their JSON Schema are logged and skipped.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

import jsonschema

from charsmith.content.validators import validate_record
from charsmith.engine.config import load_settings
from charsmith.errors import CatalogLookupError
from charsmith.logging import get_logger
from charsmith.models.catalog import (
    BackgroundRecord,
    ClassRecord,
    FeatRecord,
    FeatureRecord,
    RaceRecord,
    SpellRecord,
    SubclassRecord,
    SubraceRecord,
)
from charsmith.rules_core import PROFICIENCY_KINDS, STANDARD_OPTIONS, normalize

log = get_logger(__name__)

R = TypeVar("R")

# (collection key, schema kind, record type)
_COLLECTIONS = (
    ("race", "race", RaceRecord),
    ("subrace", "subrace", SubraceRecord),
    ("class", "class", ClassRecord),
    ("classFeature", "feature", FeatureRecord),
    ("subclass", "subclass", SubclassRecord),
    ("subclassFeature", "feature", FeatureRecord),
    ("background", "background", BackgroundRecord),
    ("spell", "spell", SpellRecord),
    ("feat", "feat", FeatRecord),
)


def _parse_collection(
    key: str,
    kind: str,
    factory: Callable[..., R],
    raw: Any,
    default_source: str,
) -> List[R]:
    records: List[R] = []
    if not raw:
        return records
    if not isinstance(raw, list):
        log.warning("Catalog collection %s is not a list; skipped", key)
        return records
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping):
            log.warning("Skipping %s[%d]: not an object", key, index)
            continue
        try:
            validate_record(kind, dict(item))
            records.append(factory.from_dict(item, default_source))  # type: ignore[attr-defined]
        except jsonschema.ValidationError as exc:
            log.warning("Skipping %s %r: %s", key, item.get("name"), exc.message)
        except (KeyError, TypeError, ValueError) as exc:
            log.warning("Skipping %s %r: %s", key, item.get("name"), exc)
    return records


def _embedded_subclasses(raw_classes: Any) -> List[dict]:
    """Subclasses nested under their class record (``class[].subclasses``)."""
    out: List[dict] = []
    for item in raw_classes or ():
        if not isinstance(item, Mapping):
            continue
        for sub in item.get("subclasses") or ():
            if isinstance(sub, Mapping):
                merged = dict(sub)
                merged.setdefault("className", item.get("name"))
                if item.get("source"):
                    merged.setdefault("classSource", item["source"])
                out.append(merged)
    return out


def _pick(records: Iterable[R], name: str, source: Optional[str], *, key: Callable[[R], Sequence[str]]) -> Optional[R]:
    target = normalize(name)
    matches = [r for r in records if target in {normalize(n) for n in key(r)}]
    if not matches:
        return None
    if source:
        wanted = normalize(source)
        for record in matches:
            if normalize(getattr(record, "source", "")) == wanted:
                return record
    legacy = [r for r in matches if getattr(r, "edition", None) != "modern"]
    return (legacy or matches)[0]


class Catalog:
    """Immutable lookup context shared by the engines."""

    def __init__(
        self,
        races: Iterable[RaceRecord] = (),
        subraces: Iterable[SubraceRecord] = (),
        classes: Iterable[ClassRecord] = (),
        class_features: Iterable[FeatureRecord] = (),
        subclasses: Iterable[SubclassRecord] = (),
        subclass_features: Iterable[FeatureRecord] = (),
        backgrounds: Iterable[BackgroundRecord] = (),
        spells: Iterable[SpellRecord] = (),
        feats: Iterable[FeatRecord] = (),
        standard_lists: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> None:
        self.races: Tuple[RaceRecord, ...] = tuple(races)
        self.subraces: Tuple[SubraceRecord, ...] = tuple(subraces)
        self.classes: Tuple[ClassRecord, ...] = tuple(classes)
        self.class_features: Tuple[FeatureRecord, ...] = tuple(class_features)
        self.subclasses: Tuple[SubclassRecord, ...] = tuple(subclasses)
        self.subclass_features: Tuple[FeatureRecord, ...] = tuple(subclass_features)
        self.backgrounds: Tuple[BackgroundRecord, ...] = tuple(backgrounds)
        self.spells: Tuple[SpellRecord, ...] = tuple(spells)
        self.feats: Tuple[FeatRecord, ...] = tuple(feats)
        self._standard: Dict[str, Tuple[str, ...]] = {
            kind: tuple(values) for kind, values in (standard_lists or {}).items() if values
        }

    @classmethod
    def from_data(cls, data: Mapping[str, Any], default_source: Optional[str] = None) -> "Catalog":
        """Parse raw collections; records without a source get ``default_source``."""
        default_source = default_source or load_settings().default_source
        parsed: Dict[str, list] = {}
        for key, kind, factory in _COLLECTIONS:
            raw = data.get(key)
            if key == "subclass":
                raw = list(raw or []) + _embedded_subclasses(data.get("class"))
            parsed[key] = _parse_collection(key, kind, factory, raw, default_source)

        standard: Dict[str, Sequence[str]] = {}
        for kind in PROFICIENCY_KINDS:
            values = data.get(kind)
            if isinstance(values, list):
                standard[kind] = [
                    v if isinstance(v, str) else str(v.get("name"))
                    for v in values
                    if isinstance(v, str) or (isinstance(v, Mapping) and v.get("name"))
                ]

        catalog = cls(
            races=parsed["race"],
            subraces=parsed["subrace"],
            classes=parsed["class"],
            class_features=parsed["classFeature"],
            subclasses=parsed["subclass"],
            subclass_features=parsed["subclassFeature"],
            backgrounds=parsed["background"],
            spells=parsed["spell"],
            feats=parsed["feat"],
            standard_lists=standard,
        )
        log.debug(
            "Catalog built: %d races, %d classes, %d backgrounds, %d spells",
            len(catalog.races),
            len(catalog.classes),
            len(catalog.backgrounds),
            len(catalog.spells),
        )
        return catalog

    # --- Lookups ---
    def get_race(self, name: str, source: Optional[str] = None) -> RaceRecord:
        found = _pick(self.races, name, source, key=lambda r: (r.name,))
        if found is None:
            raise CatalogLookupError("race", name, source)
        return found

    def get_subrace(self, name: str, race_name: Optional[str] = None, source: Optional[str] = None) -> SubraceRecord:
        pool: Iterable[SubraceRecord] = self.subraces
        if race_name:
            pool = [s for s in pool if normalize(s.race_name) == normalize(race_name)]
        found = _pick(pool, name, source, key=lambda r: (r.name,))
        if found is None:
            raise CatalogLookupError("subrace", name, source)
        return found

    def get_class(self, name: str, source: Optional[str] = None) -> ClassRecord:
        found = _pick(self.classes, name, source, key=lambda r: (r.name,))
        if found is None:
            raise CatalogLookupError("class", name, source)
        return found

    def get_subclass(self, class_name: str, name: str, source: Optional[str] = None) -> SubclassRecord:
        """Find a subclass of ``class_name`` by full name or short name."""
        pool = [s for s in self.subclasses if normalize(s.class_name) == normalize(class_name)]
        found = _pick(pool, name, source, key=lambda r: (r.name, r.short_name))
        if found is None:
            raise CatalogLookupError("subclass", f"{class_name}: {name}", source)
        return found

    def _features(self, pool: Iterable[FeatureRecord], level: int, source: Optional[str]) -> List[FeatureRecord]:
        pool = [f for f in pool if f.level <= level]
        if source:
            exact = [f for f in pool if normalize(f.class_source) == normalize(source)]
            if exact:
                pool = exact
        return sorted(pool, key=lambda f: f.level)

    def get_class_features(self, class_name: str, level: int, source: Optional[str] = None) -> List[FeatureRecord]:
        pool = [f for f in self.class_features if normalize(f.class_name) == normalize(class_name)]
        return self._features(pool, level, source)

    def get_subclass_features(
        self,
        class_name: str,
        short_name: str,
        level: int,
        source: Optional[str] = None,
    ) -> List[FeatureRecord]:
        pool = [
            f
            for f in self.subclass_features
            if normalize(f.class_name) == normalize(class_name)
            and normalize(f.subclass_short_name or "") == normalize(short_name)
        ]
        return self._features(pool, level, source)

    def get_background(self, name: str, source: Optional[str] = None) -> BackgroundRecord:
        found = _pick(self.backgrounds, name, source, key=lambda r: (r.name,))
        if found is None:
            raise CatalogLookupError("background", name, source)
        return found

    def get_spell(self, name: str, source: Optional[str] = None) -> SpellRecord:
        found = _pick(self.spells, name, source, key=lambda r: (r.name,))
        if found is None:
            raise CatalogLookupError("spell", name, source)
        return found

    def get_feat(self, name: str, source: Optional[str] = None) -> FeatRecord:
        found = _pick(self.feats, name, source, key=lambda r: (r.name,))
        if found is None:
            raise CatalogLookupError("feat", name, source)
        return found

    def all_classes(self) -> Tuple[ClassRecord, ...]:
        return self.classes

    def spells_for_class(self, class_name: str) -> List[SpellRecord]:
        target = normalize(class_name)
        return [s for s in self.spells if target in {normalize(c) for c in s.classes}]

    def standard_options(self, kind: str) -> Tuple[str, ...]:
        if kind not in STANDARD_OPTIONS:
            raise ValueError(f"unknown proficiency kind {kind!r}")
        return self._standard.get(kind) or STANDARD_OPTIONS[kind]


__all__ = ["Catalog"]
