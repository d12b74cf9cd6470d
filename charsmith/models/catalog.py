"""Immutable catalog records.

Raw 5etools-style dictionaries are converted once, at the catalog boundary,
into the frozen dataclasses below.  Proficiency blocks in particular arrive in
several shapes (bare strings, ``{"skill": ...}``, ``{"choose": ...}``,
``{"perception": true}``, ``{"anyStandard": 1}``) and are resolved here into
:class:`FixedProficiency` / :class:`ChoiceProficiency` so the engines never
have to sniff shapes again.
"""
from __future__ import annotations

import string
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from charsmith.rules_core import KIND_FIELDS, PROFICIENCY_KINDS, STANDARD_OPTIONS, ability_key


class CasterType(str, Enum):
    FULL = "full"
    HALF = "1/2"
    THIRD = "1/3"
    PACT = "pact"
    NONE = "none"

    @classmethod
    def parse(cls, value: Any) -> "CasterType":
        if not value:
            return cls.NONE
        text = str(value).strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.NONE


@dataclass(frozen=True)
class FixedProficiency:
    value: str


@dataclass(frozen=True)
class ChoiceProficiency:
    count: int
    # None means "any value of this kind"
    options: Optional[Tuple[str, ...]] = None


ProficiencyEntry = Union[FixedProficiency, ChoiceProficiency]
ProficiencyBlock = Dict[str, Tuple[ProficiencyEntry, ...]]

# 5etools keeps race/background proficiencies in per-kind top-level fields
_LEGACY_PROFICIENCY_FIELDS = {
    "skills": "skillProficiencies",
    "tools": "toolProficiencies",
    "languages": "languageProficiencies",
}

_ANY_KEYS = ("any", "anyStandard", "anyTool", "anySkill", "anyLanguage")


def _display_name(kind: str, raw: str) -> str:
    text = raw.strip()
    target = text.lower()
    for candidate in STANDARD_OPTIONS.get(kind, ()):
        if candidate.lower() == target:
            return candidate
    if text.islower():
        return string.capwords(text)
    return text


def _option_value(kind: str, raw: Any) -> Optional[str]:
    if isinstance(raw, str):
        return raw.strip() or None
    if isinstance(raw, Mapping):
        value = raw.get(KIND_FIELDS[kind]) or raw.get("name")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _parse_choice(kind: str, choose: Any) -> Optional[ChoiceProficiency]:
    if not isinstance(choose, Mapping):
        return None
    try:
        raw_count = choose.get("count")
        count = 1 if raw_count is None else int(raw_count)
    except (TypeError, ValueError):
        return None
    if count < 1:
        return None
    raw_from = choose.get("from")
    if not raw_from:
        return ChoiceProficiency(count=count, options=None)
    options = tuple(
        _display_name(kind, value)
        for value in (_option_value(kind, item) for item in raw_from)
        if value
    )
    return ChoiceProficiency(count=count, options=options or None)


def parse_proficiency_entries(kind: str, raw: Any) -> Tuple[ProficiencyEntry, ...]:
    """Resolve one kind's raw proficiency list into tagged entries.

    Unrecognised items are dropped rather than raising.
    """
    if kind not in KIND_FIELDS:
        raise ValueError(f"unknown proficiency kind {kind!r}")
    if raw is None:
        return ()
    if isinstance(raw, (str, Mapping)):
        raw = [raw]

    entries: list[ProficiencyEntry] = []
    for item in raw:
        if isinstance(item, str):
            if item.strip():
                entries.append(FixedProficiency(_display_name(kind, item)))
            continue
        if not isinstance(item, Mapping):
            continue
        if "choose" in item:
            choice = _parse_choice(kind, item["choose"])
            if choice:
                entries.append(choice)
            continue
        fixed = item.get(KIND_FIELDS[kind])
        if isinstance(fixed, str) and fixed.strip():
            entries.append(FixedProficiency(_display_name(kind, fixed)))
            continue
        for key, value in item.items():
            if key in _ANY_KEYS:
                try:
                    count = int(value)
                except (TypeError, ValueError):
                    continue
                if count > 0:
                    entries.append(ChoiceProficiency(count=count, options=None))
            elif value is True:
                entries.append(FixedProficiency(_display_name(kind, key)))
    return tuple(entries)


def parse_proficiency_block(data: Mapping[str, Any]) -> ProficiencyBlock:
    """Read ``proficiencies`` / ``startingProficiencies`` / 5etools per-kind fields."""
    block = data.get("proficiencies") or data.get("startingProficiencies") or {}
    if not isinstance(block, Mapping):
        block = {}
    result: ProficiencyBlock = {}
    for kind in PROFICIENCY_KINDS:
        raw = block.get(kind)
        if raw is None:
            raw = data.get(_LEGACY_PROFICIENCY_FIELDS[kind])
        result[kind] = parse_proficiency_entries(kind, raw)
    return result


def _int_tuple(values: Any) -> Tuple[int, ...]:
    if not isinstance(values, (list, tuple)):
        return ()
    out = []
    for v in values:
        try:
            out.append(int(v))
        except (TypeError, ValueError):
            out.append(0)
    return tuple(out)


def _entries(data: Mapping[str, Any]) -> Tuple[Any, ...]:
    entries = data.get("entries")
    return tuple(entries) if isinstance(entries, list) else ()


def _darkvision(data: Mapping[str, Any]) -> int:
    try:
        return int(data.get("darkvision") or 0)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class RaceRecord:
    name: str
    source: str
    entries: Tuple[Any, ...] = ()
    darkvision: int = 0
    resist: Tuple[Any, ...] = ()
    proficiencies: ProficiencyBlock = field(default_factory=dict)
    edition: Optional[str] = None

    @staticmethod
    def from_dict(d: Mapping[str, Any], default_source: str = "PHB") -> "RaceRecord":
        return RaceRecord(
            name=str(d["name"]),
            source=str(d.get("source") or default_source),
            entries=_entries(d),
            darkvision=_darkvision(d),
            resist=tuple(d.get("resist") or ()),
            proficiencies=parse_proficiency_block(d),
            edition=d.get("edition"),
        )


@dataclass(frozen=True)
class SubraceRecord:
    name: str
    race_name: str
    race_source: str
    source: str
    entries: Tuple[Any, ...] = ()
    darkvision: int = 0
    resist: Tuple[Any, ...] = ()
    proficiencies: ProficiencyBlock = field(default_factory=dict)

    @staticmethod
    def from_dict(d: Mapping[str, Any], default_source: str = "PHB") -> "SubraceRecord":
        source = str(d.get("source") or default_source)
        return SubraceRecord(
            name=str(d["name"]),
            race_name=str(d["raceName"]),
            race_source=str(d.get("raceSource") or source),
            source=source,
            entries=_entries(d),
            darkvision=_darkvision(d),
            resist=tuple(d.get("resist") or ()),
            proficiencies=parse_proficiency_block(d),
        )


def _hit_die(d: Mapping[str, Any]) -> Optional[int]:
    hd = d.get("hd")
    if isinstance(hd, Mapping):
        hd = hd.get("faces")
    if isinstance(hd, str):
        hd = hd.strip().lower().lstrip("d")
    try:
        return int(hd) if hd else None
    except (TypeError, ValueError):
        return None


def _spellcasting_ability(d: Mapping[str, Any]) -> Optional[str]:
    value = d.get("spellcastingAbility")
    return ability_key(value) if isinstance(value, str) and value.strip() else None


@dataclass(frozen=True)
class ClassRecord:
    name: str
    source: str
    hit_die: Optional[int] = None
    caster_progression: CasterType = CasterType.NONE
    spellcasting_ability: Optional[str] = None
    prepared_spells: bool = False
    spells_known_progression: Tuple[int, ...] = ()
    spells_known_progression_fixed: Tuple[int, ...] = ()
    cantrip_progression: Tuple[int, ...] = ()
    multiclass_requirements: Optional[Mapping[str, Any]] = None
    class_features: Tuple[Any, ...] = ()
    proficiencies: ProficiencyBlock = field(default_factory=dict)
    is_sidekick: bool = False
    edition: Optional[str] = None

    @property
    def is_spellcaster(self) -> bool:
        return self.spellcasting_ability is not None

    @staticmethod
    def from_dict(d: Mapping[str, Any], default_source: str = "PHB") -> "ClassRecord":
        multiclassing = d.get("multiclassing") or {}
        requirements = multiclassing.get("requirements") if isinstance(multiclassing, Mapping) else None
        return ClassRecord(
            name=str(d["name"]),
            source=str(d.get("source") or default_source),
            hit_die=_hit_die(d),
            caster_progression=CasterType.parse(d.get("casterProgression")),
            spellcasting_ability=_spellcasting_ability(d),
            prepared_spells=bool(d.get("preparedSpells")),
            spells_known_progression=_int_tuple(d.get("spellsKnownProgression")),
            spells_known_progression_fixed=_int_tuple(d.get("spellsKnownProgressionFixed")),
            cantrip_progression=_int_tuple(d.get("cantripProgression")),
            multiclass_requirements=requirements if isinstance(requirements, Mapping) else None,
            class_features=tuple(d.get("classFeatures") or ()),
            proficiencies=parse_proficiency_block(d),
            is_sidekick=bool(d.get("isSidekick")),
            edition=d.get("edition"),
        )


@dataclass(frozen=True)
class SubclassRecord:
    name: str
    short_name: str
    class_name: str
    class_source: str
    source: str
    caster_progression: CasterType = CasterType.NONE
    spellcasting_ability: Optional[str] = None

    @staticmethod
    def from_dict(d: Mapping[str, Any], default_source: str = "PHB") -> "SubclassRecord":
        source = str(d.get("source") or default_source)
        return SubclassRecord(
            name=str(d["name"]),
            short_name=str(d.get("shortName") or d["name"]),
            class_name=str(d["className"]),
            class_source=str(d.get("classSource") or source),
            source=source,
            caster_progression=CasterType.parse(d.get("casterProgression")),
            spellcasting_ability=_spellcasting_ability(d),
        )


@dataclass(frozen=True)
class FeatureRecord:
    """A class or subclass feature gained at ``level``."""

    name: str
    class_name: str
    class_source: str
    source: str
    level: int
    entries: Tuple[Any, ...] = ()
    subclass_short_name: Optional[str] = None

    @staticmethod
    def from_dict(d: Mapping[str, Any], default_source: str = "PHB") -> "FeatureRecord":
        source = str(d.get("source") or default_source)
        return FeatureRecord(
            name=str(d["name"]),
            class_name=str(d["className"]),
            class_source=str(d.get("classSource") or source),
            source=source,
            level=int(d["level"]),
            entries=_entries(d),
            subclass_short_name=d.get("subclassShortName"),
        )

    def as_entry(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": "entries",
            "level": self.level,
            "entries": list(self.entries),
        }


@dataclass(frozen=True)
class BackgroundRecord:
    name: str
    source: str
    entries: Tuple[Any, ...] = ()
    proficiencies: ProficiencyBlock = field(default_factory=dict)

    @staticmethod
    def from_dict(d: Mapping[str, Any], default_source: str = "PHB") -> "BackgroundRecord":
        return BackgroundRecord(
            name=str(d["name"]),
            source=str(d.get("source") or default_source),
            entries=_entries(d),
            proficiencies=parse_proficiency_block(d),
        )


def _spell_classes(raw: Any) -> Tuple[str, ...]:
    if isinstance(raw, Mapping):
        raw = raw.get("fromClassList") or []
    if isinstance(raw, str):
        raw = [raw]
    names: list[str] = []
    for item in raw or ():
        if isinstance(item, str):
            names.append(item)
        elif isinstance(item, Mapping) and item.get("name"):
            names.append(str(item["name"]))
    return tuple(names)


@dataclass(frozen=True)
class SpellRecord:
    name: str
    source: str
    level: int = 0
    classes: Tuple[str, ...] = ()

    @staticmethod
    def from_dict(d: Mapping[str, Any], default_source: str = "PHB") -> "SpellRecord":
        return SpellRecord(
            name=str(d["name"]),
            source=str(d.get("source") or default_source),
            level=int(d.get("level") or 0),
            classes=_spell_classes(d.get("classes")),
        )


@dataclass(frozen=True)
class FeatRecord:
    name: str
    source: str
    prerequisite: Tuple[Any, ...] = ()

    @staticmethod
    def from_dict(d: Mapping[str, Any], default_source: str = "PHB") -> "FeatRecord":
        return FeatRecord(
            name=str(d["name"]),
            source=str(d.get("source") or default_source),
            prerequisite=tuple(d.get("prerequisite") or ()),
        )


def iter_named_entries(entries: Iterable[Any]) -> Iterable[Mapping[str, Any]]:
    """Yield the ``{"type": "entries", "name": ...}`` blocks of an entry list."""
    for entry in entries:
        if isinstance(entry, Mapping) and entry.get("type") == "entries" and entry.get("name"):
            yield entry


__all__ = [
    "BackgroundRecord",
    "CasterType",
    "ChoiceProficiency",
    "ClassRecord",
    "FeatRecord",
    "FeatureRecord",
    "FixedProficiency",
    "ProficiencyBlock",
    "ProficiencyEntry",
    "RaceRecord",
    "SpellRecord",
    "SubclassRecord",
    "SubraceRecord",
    "iter_named_entries",
    "parse_proficiency_block",
    "parse_proficiency_entries",
]
