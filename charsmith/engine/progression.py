from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple

from charsmith.content.catalog import Catalog
from charsmith.engine import history
from charsmith.engine.config import EngineSettings, load_settings
from charsmith.engine.proficiency import apply_source_record, clear_source, remove_proficiencies_by_source
from charsmith.engine.spellcasting import initialize_spellcasting_for_class, update_spell_slots
from charsmith.errors import CatalogLookupError
from charsmith.logging import get_logger
from charsmith.models.catalog import ClassRecord, FeatureRecord
from charsmith.models.character import AbilityBonus, Character, ClassEntry, Trait
from charsmith.rules_core import (
    ABILITY_ORDER,
    ASI_LEVEL_OVERRIDES,
    DEFAULT_ASI_LEVELS,
    HIT_DIE,
    PROFICIENCY_KINDS,
    ability_key,
    average_hit_die,
    normalize,
    proficiency_bonus_for_level,
)

log = get_logger(__name__)

ASI_FEATURE = "Ability Score Improvement"


@dataclass
class LevelChange:
    ok: bool
    class_name: str
    level: int = 0
    message: str = ""
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MulticlassOption:
    name: str
    meets_requirements: bool
    requirement_text: str = ""


def total_level(character: Character) -> int:
    return sum(entry.level for entry in character.progression.classes)


def proficiency_bonus(character: Character) -> int:
    return proficiency_bonus_for_level(max(1, total_level(character)))


def hit_die_for(catalog: Catalog, class_name: str) -> int:
    try:
        record = catalog.get_class(class_name)
    except CatalogLookupError:
        record = None
    if record is not None and record.hit_die:
        return record.hit_die
    return HIT_DIE.get(class_name, 8)


def _parse_feature_level(ref: str) -> Optional[int]:
    # "Ability Score Improvement|Fighter||4": the last numeric part is the level
    for part in reversed(ref.split("|")):
        if part.strip().isdigit():
            return int(part)
    return None


def asi_levels_for(catalog: Catalog, class_name: str) -> Tuple[int, ...]:
    try:
        record = catalog.get_class(class_name)
    except CatalogLookupError:
        record = None
    levels = set()
    for feature in record.class_features if record else ():
        ref = feature.get("classFeature") if isinstance(feature, Mapping) else feature
        if not isinstance(ref, str) or not ref.startswith(ASI_FEATURE):
            continue
        level = _parse_feature_level(ref)
        if level is not None:
            levels.add(level)
    if levels:
        return tuple(sorted(levels))
    return ASI_LEVEL_OVERRIDES.get(class_name, DEFAULT_ASI_LEVELS)


def calculate_max_hit_points(character: Character, catalog: Catalog) -> int:
    """Hit die average (or rolled value) plus CON per level, at least 1 each.

    Level 1 of the first class always takes the die's maximum.
    """
    con = character.ability_modifier("con")
    if not character.progression.classes:
        return max(1, 8 + con)

    total = 0
    for index, entry in enumerate(character.progression.classes):
        faces = entry.hit_die or hit_die_for(catalog, entry.name)
        for level in range(1, entry.level + 1):
            if index == 0 and level == 1:
                base = faces
            else:
                base = entry.hit_points.get(level) or average_hit_die(faces)
            total += max(1, base + con)
    return total


# --- Multiclassing ---


def _requirement_groups(requirements: Mapping) -> Tuple[bool, List[Tuple[str, int]]]:
    """Return (is_or, [(ability, minimum), ...])."""
    if isinstance(requirements.get("or"), list):
        pairs = [
            (ability_key(abbr), int(score))
            for group in requirements["or"]
            if isinstance(group, Mapping)
            for abbr, score in group.items()
        ]
        return True, pairs
    pairs = [(ability_key(abbr), int(score)) for abbr, score in requirements.items() if abbr != "or"]
    return False, pairs


def requirement_text(requirements: Optional[Mapping]) -> str:
    if not requirements:
        return ""
    is_or, pairs = _requirement_groups(requirements)
    parts = [f"{abbr.upper()} {score}" for abbr, score in pairs]
    return (" or " if is_or else ", ").join(parts)


def check_multiclass_requirements(character: Character, catalog: Catalog, class_name: str) -> bool:
    try:
        record = catalog.get_class(class_name)
    except CatalogLookupError:
        log.debug("No class record for %s; requirements treated as met", class_name)
        return True
    if not record.multiclass_requirements:
        return True
    is_or, pairs = _requirement_groups(record.multiclass_requirements)
    if not pairs:
        return True
    scores = [character.total_ability(abbr) >= score for abbr, score in pairs if abbr in ABILITY_ORDER]
    return any(scores) if is_or else all(scores)


def multiclass_options(
    character: Character,
    catalog: Catalog,
    ignore_requirements: bool = False,
) -> List[MulticlassOption]:
    """Classes the character could take next, sorted by name."""
    taken = {normalize(entry.name) for entry in character.progression.classes}
    allowed = {normalize(s) for s in character.allowed_sources}
    seen = set()
    names: List[ClassRecord] = []
    for record in catalog.all_classes():
        key = normalize(record.name)
        if record.is_sidekick or normalize(record.source) not in allowed:
            continue
        if key in taken or key in seen:
            continue
        seen.add(key)
        names.append(record)

    options = []
    for record in sorted(names, key=lambda r: r.name):
        meets = ignore_requirements or check_multiclass_requirements(character, catalog, record.name)
        options.append(
            MulticlassOption(
                name=record.name,
                meets_requirements=meets,
                requirement_text=requirement_text(record.multiclass_requirements),
            )
        )
    return options


# --- Features ---


def _grant_features(character: Character, features: List[FeatureRecord], after_level: int, source: str) -> List[str]:
    added = []
    traits = character.features.traits
    for feature in features:
        if feature.level <= after_level or feature.name in traits:
            continue
        traits[feature.name] = Trait(entry=feature.as_entry(), source=source)
        added.append(feature.name)
    return added


def grant_level_features(character: Character, catalog: Catalog, entry: ClassEntry, after_level: int) -> List[str]:
    """Add class and subclass features gained above ``after_level``."""
    added = _grant_features(
        character,
        catalog.get_class_features(entry.name, entry.level, entry.source),
        after_level,
        entry.name,
    )
    if entry.subclass:
        try:
            sub = catalog.get_subclass(entry.name, entry.subclass)
        except CatalogLookupError:
            log.debug("No subclass record for %s: %s", entry.name, entry.subclass)
        else:
            added += _grant_features(
                character,
                catalog.get_subclass_features(entry.name, sub.short_name, entry.level, entry.source),
                after_level,
                sub.name,
            )
    return added


def _feature_sources(catalog: Catalog, entry: ClassEntry) -> set:
    sources = {entry.name}
    if entry.subclass:
        sources.add(entry.subclass)
        try:
            sources.add(catalog.get_subclass(entry.name, entry.subclass).name)
        except CatalogLookupError:
            pass
    return sources


def _drop_traits(character: Character, sources: set, level: Optional[int] = None) -> None:
    for name, trait in list(character.features.traits.items()):
        if trait.source not in sources:
            continue
        if level is not None and not (isinstance(trait.entry, Mapping) and trait.entry.get("level") == level):
            continue
        del character.features.traits[name]


# --- Levelling ---


def _fail(class_name: str, message: str, level: int = 0) -> LevelChange:
    log.warning(message)
    return LevelChange(ok=False, class_name=class_name, level=level, message=message)


def add_class_level(
    character: Character,
    catalog: Catalog,
    class_name: str,
    new_level: Optional[int] = None,
    *,
    source: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: Optional[EngineSettings] = None,
) -> LevelChange:
    """Take a new class at level 1 (or ``new_level``) or raise an existing one."""
    settings = settings or load_settings()
    try:
        record = catalog.get_class(class_name, source)
    except CatalogLookupError as exc:
        return _fail(class_name, f"Cannot level {class_name}: {exc}")

    entry = character.class_entry(record.name)
    current = entry.level if entry else 0
    target = new_level if new_level is not None else current + 1
    if target <= current or target < 1:
        return _fail(record.name, f"{record.name} is already level {current}", current)
    if total_level(character) - current + target > settings.max_level:
        return _fail(record.name, f"Total level cannot exceed {settings.max_level}", current)

    warnings: List[str] = []
    first_class = not character.progression.classes
    if entry is None:
        if not first_class and not check_multiclass_requirements(character, catalog, record.name):
            warnings.append(
                f"{record.name} multiclass requirements not met ({requirement_text(record.multiclass_requirements)})"
            )
        entry = ClassEntry(
            name=record.name,
            source=record.source,
            level=target,
            hit_die=record.hit_die or hit_die_for(catalog, record.name),
        )
        character.progression.classes.append(entry)
        if first_class:
            apply_source_record(character, catalog, "class", record, settings=settings)
    else:
        entry.level = target

    if entry.name not in character.spellcasting.classes:
        initialize_spellcasting_for_class(character, catalog, entry.name, entry.level, entry.subclass)
    update_spell_slots(character, catalog)
    grant_level_features(character, catalog, entry, current)
    for level in range(current + 1, target + 1):
        history.stamp_level(character, entry.name, level, now)

    log.info("%s is now level %d", entry.name, target)
    return LevelChange(
        ok=True,
        class_name=entry.name,
        level=target,
        message=f"{entry.name} is now level {target}",
        warnings=warnings,
    )


def choose_subclass(character: Character, catalog: Catalog, class_name: str, subclass: str) -> LevelChange:
    entry = character.class_entry(class_name)
    if entry is None:
        return _fail(class_name, f"{class_name} is not one of the character's classes")
    try:
        sub = catalog.get_subclass(entry.name, subclass, entry.source)
    except CatalogLookupError as exc:
        return _fail(entry.name, f"Cannot choose subclass: {exc}", entry.level)

    if entry.subclass and normalize(entry.subclass) != normalize(sub.name):
        _drop_traits(character, _feature_sources(catalog, entry) - {entry.name})
    entry.subclass = sub.name
    if entry.name not in character.spellcasting.classes:
        initialize_spellcasting_for_class(character, catalog, entry.name, entry.level, entry.subclass)
    update_spell_slots(character, catalog)
    grant_level_features(character, catalog, entry, 0)
    return LevelChange(ok=True, class_name=entry.name, level=entry.level, message=f"{entry.name} subclass: {sub.name}")


def _reassign_class_proficiencies(character: Character, catalog: Catalog) -> None:
    """Hand the class proficiency slot to whichever class is now first."""
    for kind in PROFICIENCY_KINDS:
        clear_source(character, kind, "class")
    if not character.progression.classes:
        return
    first = character.progression.classes[0]
    try:
        record = catalog.get_class(first.name, first.source)
    except CatalogLookupError as exc:
        log.debug("No class proficiencies for %s: %s", first.name, exc)
        return
    apply_source_record(character, catalog, "class", record)


def remove_class_level(
    character: Character,
    catalog: Catalog,
    class_name: str,
) -> LevelChange:
    """Undo the top level of ``class_name``; the class is dropped entirely at 0."""
    entry = character.class_entry(class_name)
    if entry is None:
        return _fail(class_name, f"{class_name} is not one of the character's classes")

    removed = entry.level
    sources = _feature_sources(catalog, entry)
    history.drop_level(character, entry.name, removed)
    entry.hit_points.pop(removed, None)

    if removed <= 1:
        supplied_class_proficiencies = character.progression.classes.index(entry) == 0
        character.progression.classes.remove(entry)
        character.spellcasting.classes.pop(entry.name, None)
        _drop_traits(character, sources)
        remove_proficiencies_by_source(character, entry.name)
        if supplied_class_proficiencies:
            _reassign_class_proficiencies(character, catalog)
        history.clear_class(character, entry.name)
        level = 0
    else:
        _drop_traits(character, sources, removed)
        entry.level = level = removed - 1

    update_spell_slots(character, catalog)
    message = f"{entry.name} removed" if level == 0 else f"{entry.name} is now level {level}"
    log.info(message)
    return LevelChange(ok=True, class_name=entry.name, level=level, message=message)


def remove_last_level(character: Character, catalog: Catalog) -> LevelChange:
    class_name = history.last_levelled_class(character)
    if class_name is None:
        return _fail("", "Character has no class levels to remove")
    return remove_class_level(character, catalog, class_name)


# --- Ability score improvements ---


def _asi_candidates(character: Character) -> List[ClassEntry]:
    name = history.last_levelled_class(character, fallback_highest=False)
    if name is not None:
        entry = character.class_entry(name)
        if entry is not None:
            return [entry]
    return list(character.progression.classes)


def has_asi_available(character: Character, catalog: Catalog) -> bool:
    for entry in _asi_candidates(character):
        if entry.level not in asi_levels_for(catalog, entry.name):
            continue
        choices = history.choices_for(character, entry.name, entry.level)
        if "asi" not in choices and "feat" not in choices:
            return True
    return False


def record_asi_choice(
    character: Character,
    catalog: Catalog,
    class_name: str,
    level: int,
    abilities: Optional[Dict[str, int]] = None,
    feat: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> LevelChange:
    """Store an ASI (+2 split over at most two abilities) or a feat for ``level``."""
    entry = character.class_entry(class_name)
    if entry is None:
        return _fail(class_name, f"{class_name} is not one of the character's classes")
    if level > entry.level or level not in asi_levels_for(catalog, entry.name):
        return _fail(entry.name, f"{entry.name} has no ability score improvement at level {level}", entry.level)
    if bool(abilities) == bool(feat):
        return _fail(entry.name, "Choose either ability increases or a feat", entry.level)

    label = f"{entry.name} {level} ASI"
    if feat:
        try:
            record = catalog.get_feat(feat)
        except CatalogLookupError as exc:
            return _fail(entry.name, f"Unknown feat: {exc}", entry.level)
        choices = {"feat": record.name}
    else:
        increases = {ability_key(k): int(v) for k, v in abilities.items() if int(v)}
        if (
            sum(increases.values()) != 2
            or any(v < 0 or v > 2 for v in increases.values())
            or any(k not in ABILITY_ORDER for k in increases)
        ):
            return _fail(entry.name, "Ability score improvement must add 2 points in total", entry.level)
        choices = {"asi": increases}

    # replace whatever was chosen for this level before
    for key, bonuses in list(character.ability_bonuses.items()):
        character.ability_bonuses[key] = [b for b in bonuses if b.source != label]
    prior = character.progression.history.get(entry.name, {}).get(level)
    if prior is not None:
        prior.choices.pop("asi", None)
        prior.choices.pop("feat", None)

    for key, value in choices.get("asi", {}).items():
        character.ability_bonuses.setdefault(key, []).append(AbilityBonus(value=value, source=label))
    history.record_choice(character, entry.name, level, choices, now)
    return LevelChange(ok=True, class_name=entry.name, level=level, message=f"Recorded {label}")


__all__ = [
    "LevelChange",
    "MulticlassOption",
    "add_class_level",
    "asi_levels_for",
    "calculate_max_hit_points",
    "check_multiclass_requirements",
    "choose_subclass",
    "grant_level_features",
    "has_asi_available",
    "hit_die_for",
    "multiclass_options",
    "proficiency_bonus",
    "proficiency_bonus_for_level",
    "record_asi_choice",
    "remove_class_level",
    "remove_last_level",
    "requirement_text",
    "total_level",
]
