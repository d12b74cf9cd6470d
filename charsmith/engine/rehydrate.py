"""Backfill derived character fields after a load.

Each step only fills what is missing, so running :func:`rehydrate` twice
leaves the character unchanged.  Catalog misses are logged and the step is
skipped.
"""
from __future__ import annotations

from typing import Any, Iterable

from charsmith.content.catalog import Catalog
from charsmith.errors import CatalogLookupError
from charsmith.logging import get_logger
from charsmith.models.catalog import iter_named_entries
from charsmith.models.character import Character, SpellcastingState, Trait

log = get_logger(__name__)

RACIAL_SOURCES = ("Race", "Subrace")


def _apply_traits(character: Character, entries: Iterable[Any], source: str) -> None:
    for entry in iter_named_entries(entries):
        character.features.traits[entry["name"]] = Trait(entry=dict(entry), source=source)


def rehydrate_racial_features(character: Character, catalog: Catalog) -> None:
    race = character.race
    if race is None:
        return
    try:
        record = catalog.get_race(race.name, race.source)
    except CatalogLookupError as exc:
        log.debug("Skipping racial rehydration: %s", exc)
        return

    features = character.features
    if not features.traits:
        _apply_traits(character, record.entries, "Race")
        if race.subrace:
            try:
                sub = catalog.get_subrace(race.subrace, record.name, race.subrace_source or race.source)
            except CatalogLookupError as exc:
                log.debug("Skipping subrace traits: %s", exc)
            else:
                _apply_traits(character, sub.entries, "Subrace")

    if not features.darkvision and record.darkvision:
        features.darkvision = record.darkvision

    if not features.resistances and record.resist:
        # choice-based resistances ({"choose": ...}) need the player
        features.resistances = [r for r in record.resist if isinstance(r, str)]


def rehydrate_class_features(character: Character, catalog: Catalog) -> None:
    classes = character.progression.classes
    if not classes:
        return
    if any(t.source and t.source not in RACIAL_SOURCES for t in character.features.traits.values()):
        return

    traits = character.features.traits
    for entry in classes:
        for feature in catalog.get_class_features(entry.name, entry.level, entry.source):
            traits[feature.name] = Trait(entry=feature.as_entry(), source=entry.name)
        if not entry.subclass:
            continue
        try:
            sub = catalog.get_subclass(entry.name, entry.subclass, entry.source)
        except CatalogLookupError as exc:
            log.debug("Subclass features not found: %s", exc)
            continue
        for feature in catalog.get_subclass_features(entry.name, sub.short_name, entry.level, entry.source):
            traits[feature.name] = Trait(entry=feature.as_entry(), source=entry.subclass)


def rehydrate_background_feature(character: Character, catalog: Catalog) -> None:
    background = character.background
    if background is None or character.background_feature:
        return
    try:
        record = catalog.get_background(background.name, background.source)
    except CatalogLookupError as exc:
        log.debug("Skipping background feature: %s", exc)
        return

    for entry in record.entries:
        if not isinstance(entry, dict):
            continue
        flagged = (entry.get("data") or {}).get("isFeature") is True
        named = entry.get("type") == "entries" and str(entry.get("name", "")).startswith("Feature:")
        if not (flagged or named):
            continue
        name = entry.get("name") or ""
        parts = entry.get("entries")
        desc = " ".join(e for e in parts if isinstance(e, str)) if isinstance(parts, list) else ""
        character.background_feature = f"{name}\n{desc}" if desc else name
        return


def rehydrate_spellcasting(character: Character, catalog: Catalog) -> None:
    states = character.spellcasting.classes
    for entry in character.progression.classes:
        existing = states.get(entry.name)
        if existing is not None and existing.spellcasting_ability:
            continue
        try:
            record = catalog.get_class(entry.name)
        except CatalogLookupError as exc:
            log.debug("Skipping spellcasting backfill: %s", exc)
            continue
        if not record.spellcasting_ability:
            continue
        if existing is not None:
            existing.spellcasting_ability = record.spellcasting_ability
            if not existing.level:
                existing.level = entry.level
        else:
            states[entry.name] = SpellcastingState(
                level=entry.level,
                spellcasting_ability=record.spellcasting_ability,
            )


def rehydrate(character: Character, catalog: Catalog) -> Character:
    rehydrate_racial_features(character, catalog)
    rehydrate_class_features(character, catalog)
    rehydrate_spellcasting(character, catalog)
    rehydrate_background_feature(character, catalog)
    log.debug("Rehydration complete for %s", character.name or "<unnamed>")
    return character


__all__ = [
    "rehydrate",
    "rehydrate_background_feature",
    "rehydrate_class_features",
    "rehydrate_racial_features",
    "rehydrate_spellcasting",
]
