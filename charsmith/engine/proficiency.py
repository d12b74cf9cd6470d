"""Optional and fixed proficiency bookkeeping.

Each proficiency kind (skills, tools, languages) carries an optional record
per source (race, class, background) plus a combined record that is always
derived from the three.  Fixed grants are tracked in
``character.proficiency_sources`` so that a value granted by several sources
survives until the last one is removed.  Choices made by the player are
tagged ``"<Source> Choice"``.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from charsmith.content.catalog import Catalog
from charsmith.engine.config import EngineSettings, load_settings
from charsmith.logging import get_logger
from charsmith.models.catalog import ChoiceProficiency, FixedProficiency, ProficiencyEntry
from charsmith.models.character import Character, OptionalRecord
from charsmith.rules_core import (
    OPTIONAL_SOURCES,
    PROFICIENCY_KINDS,
    SKILL_ABILITIES,
    normalize,
    proficiency_bonus_for_level,
)

log = get_logger(__name__)

_DEFAULT_LABELS = {"race": "Race", "class": "Class", "background": "Background"}

__all__ = [
    "add_proficiency",
    "apply_source_record",
    "available_optional",
    "choice_label",
    "clear_source",
    "deselect_optional",
    "has_proficiency",
    "is_valid_skill",
    "normalize",
    "proficiencies_with_sources",
    "recalculate_combined",
    "remove_proficiencies_by_source",
    "select_optional",
    "skill_ability",
    "skill_modifier",
    "update_source_proficiencies",
]


def choice_label(source: str) -> str:
    return f"{source.capitalize()} Choice"


def _check(kind: str, source: Optional[str] = None) -> None:
    if kind not in PROFICIENCY_KINDS:
        raise ValueError(f"unknown proficiency kind {kind!r}")
    if source is not None and source not in OPTIONAL_SOURCES:
        raise ValueError(f"unknown proficiency source {source!r}")


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for value in values:
        key = normalize(value)
        if key and key not in seen:
            seen.add(key)
            out.append(value)
    return out


def _find(values: Sequence[str], value: str) -> Optional[str]:
    target = normalize(value)
    for candidate in values:
        if normalize(candidate) == target:
            return candidate
    return None


def _sources_for(character: Character, kind: str) -> Dict[str, set]:
    return character.proficiency_sources.setdefault(kind, {})


def has_proficiency(character: Character, kind: str, value: str) -> bool:
    return _find(character.proficiencies.kind(kind), value) is not None


def _granted_by_fixed_source(character: Character, kind: str, value: str) -> bool:
    tracked = _sources_for(character, kind)
    key = _find(list(tracked), value)
    if key is None:
        return False
    return any("Choice" not in s for s in tracked[key])


def add_proficiency(character: Character, kind: str, value: str, source: str) -> bool:
    """Grant ``value`` from ``source``; return True if it was not held before."""
    _check(kind)
    if not value or not value.strip() or not source:
        log.warning("Ignoring proficiency grant with empty value or source: %r/%r", value, source)
        return False

    held = character.proficiencies.kind(kind)
    existing = _find(held, value)
    was_new = existing is None
    if was_new:
        held.append(value)

    tracked = _sources_for(character, kind)
    key = _find(list(tracked), value) or existing or value
    tracked.setdefault(key, set()).add(source)

    if kind == "skills" and "Choice" not in source:
        _refund_optional_skill(character, value, source)
    return was_new


def _remove_from_source(character: Character, kind: str, value: str, source: str) -> bool:
    tracked = _sources_for(character, kind)
    key = _find(list(tracked), value)
    if key is None:
        return False
    sources = tracked[key]
    if source not in sources:
        return False
    sources.discard(source)
    if not sources:
        del tracked[key]
        held = character.proficiencies.kind(kind)
        existing = _find(held, key)
        if existing is not None:
            held.remove(existing)
    return True


def remove_proficiencies_by_source(character: Character, source: str) -> Dict[str, List[str]]:
    """Drop ``source`` from every grant; values with no source left are removed."""
    removed: Dict[str, List[str]] = {}
    if not source:
        return removed
    for kind in PROFICIENCY_KINDS:
        removed[kind] = []
        for value, sources in list(_sources_for(character, kind).items()):
            if source in sources:
                _remove_from_source(character, kind, value, source)
                removed[kind].append(value)
    return removed


def _refund_optional_skill(character: Character, value: str, new_source: str) -> None:
    refunded = False
    kind_record = character.optional_proficiencies.skills
    for source in OPTIONAL_SOURCES:
        if new_source == _DEFAULT_LABELS[source]:
            continue
        record = kind_record.source(source)
        match = _find(record.selected, value)
        if match is None:
            continue
        record.selected.remove(match)
        _remove_from_source(character, "skills", match, choice_label(source))
        refunded = True
    if refunded:
        log.info("Refunded optional skill %s now granted by %s", value, new_source)
        recalculate_combined(character, "skills", preserve_legacy=False)


def _resolve_options(catalog: Catalog, kind: str, entries: Sequence[ProficiencyEntry]) -> List[str]:
    options: List[str] = []
    for entry in entries:
        if isinstance(entry, ChoiceProficiency):
            options.extend(entry.options if entry.options is not None else catalog.standard_options(kind))
    return _dedupe(options)


def recalculate_combined(
    character: Character,
    kind: str,
    settings: Optional[EngineSettings] = None,
    *,
    preserve_legacy: bool = True,
) -> None:
    """Rebuild the combined record of ``kind`` from its three sources.

    A non-empty combined selection left over from an older save is kept
    when no source has any selection, as long as the legacy toggle is on.
    """
    _check(kind)
    record = character.optional_proficiencies.kind(kind)
    sources = record.sources()
    allowed = sum(s.allowed for s in sources)
    options = _dedupe(o for s in sources for o in s.options)
    selected = _dedupe(v for s in sources for v in s.selected)

    if not selected and record.selected and preserve_legacy:
        settings = settings or load_settings()
        if settings.keep_legacy_combined_selections:
            kept = [_find(options, v) for v in record.selected]
            selected = _dedupe(v for v in kept if v)[:allowed]
            if selected:
                log.debug("Keeping legacy combined %s selections: %s", kind, selected)

    record.allowed = allowed
    record.options = options
    record.selected = selected


def update_source_proficiencies(
    character: Character,
    catalog: Catalog,
    kind: str,
    source: str,
    entries: Sequence[ProficiencyEntry],
    grant_label: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
) -> OptionalRecord:
    """Reconcile one source's proficiencies of ``kind`` with new catalog data.

    Fixed entries are (re)granted under ``grant_label``.  Choice entries set
    the source's ``allowed`` and ``options``; earlier selections survive only
    if they are still offered and not already granted outright, and are cut
    down to the new ``allowed``.
    """
    _check(kind, source)
    label = grant_label or _default_label(character, source)

    _remove_source_grants(character, kind, label)
    for entry in entries:
        if isinstance(entry, FixedProficiency):
            add_proficiency(character, kind, entry.value, label)

    allowed = sum(e.count for e in entries if isinstance(e, ChoiceProficiency))
    options = _resolve_options(catalog, kind, entries)

    kind_record = character.optional_proficiencies.kind(kind)
    previous = kind_record.source(source)
    tag = choice_label(source)
    survivors: List[str] = []
    for value in previous.selected:
        option = _find(options, value)
        if option is None or _granted_by_fixed_source(character, kind, value) or _find(survivors, option):
            _remove_from_source(character, kind, value, tag)
            continue
        survivors.append(option)
    for value in survivors[allowed:]:
        _remove_from_source(character, kind, value, tag)
    survivors = survivors[:allowed]

    dropped = len(previous.selected) - len(survivors)
    if dropped:
        log.info("Dropped %d %s %s selection(s) no longer offered", dropped, source, kind)

    updated = OptionalRecord(allowed=allowed, options=options, selected=survivors)
    kind_record.set_source(source, updated)
    recalculate_combined(character, kind, settings)
    return updated


def _remove_source_grants(character: Character, kind: str, source: str) -> List[str]:
    removed = []
    for value, sources in list(_sources_for(character, kind).items()):
        if source in sources:
            _remove_from_source(character, kind, value, source)
            removed.append(value)
    return removed


def _default_label(character: Character, source: str) -> str:
    if source == "class" and character.progression.classes:
        return character.progression.classes[0].name
    return _DEFAULT_LABELS[source]


def apply_source_record(
    character: Character,
    catalog: Catalog,
    source: str,
    record,
    grant_label: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
) -> None:
    """Run :func:`update_source_proficiencies` for every kind of a race, class or background."""
    if grant_label is None and source == "class":
        grant_label = record.name
    for kind in PROFICIENCY_KINDS:
        update_source_proficiencies(
            character,
            catalog,
            kind,
            source,
            record.proficiencies.get(kind, ()),
            grant_label=grant_label,
            settings=settings,
        )


def select_optional(character: Character, kind: str, source: str, value: str) -> bool:
    _check(kind, source)
    record = character.optional_proficiencies.kind(kind).source(source)
    if _find(record.selected, value):
        return False
    if len(record.selected) >= record.allowed:
        log.warning("Maximum optional %s already selected for %s", kind, source)
        return False
    option = _find(record.options, value)
    if option is None:
        log.warning("%s is not an available %s option for %s", value, kind, source)
        return False
    if _granted_by_fixed_source(character, kind, option):
        log.warning("%s is already granted; not selectable as a %s choice", option, source)
        return False
    record.selected.append(option)
    add_proficiency(character, kind, option, choice_label(source))
    recalculate_combined(character, kind, preserve_legacy=False)
    return True


def deselect_optional(character: Character, kind: str, source: str, value: str) -> bool:
    _check(kind, source)
    record = character.optional_proficiencies.kind(kind).source(source)
    match = _find(record.selected, value)
    if match is None:
        return False
    record.selected.remove(match)
    _remove_from_source(character, kind, match, choice_label(source))
    recalculate_combined(character, kind, preserve_legacy=False)
    return True


def available_optional(character: Character, kind: str, source: str) -> List[str]:
    _check(kind, source)
    record = character.optional_proficiencies.kind(kind).source(source)
    return [
        option
        for option in record.options
        if _find(record.selected, option) is None and not _granted_by_fixed_source(character, kind, option)
    ]


def clear_source(character: Character, kind: str, source: str) -> None:
    _check(kind, source)
    kind_record = character.optional_proficiencies.kind(kind)
    for value in kind_record.source(source).selected:
        _remove_from_source(character, kind, value, choice_label(source))
    kind_record.set_source(source, OptionalRecord())
    recalculate_combined(character, kind, preserve_legacy=False)


def proficiencies_with_sources(character: Character, kind: str) -> Dict[str, List[str]]:
    """Each proficiency of ``kind`` with the sorted names of what grants it."""
    _check(kind)
    sources = _sources_for(character, kind)
    return {
        value: sorted(sources.get(_find(list(sources), value) or value, ()))
        for value in character.proficiencies.kind(kind)
    }


# --- Skills ---


def skill_ability(skill: str) -> Optional[str]:
    """Three-letter ability key governing ``skill``; None for unknown skills."""
    target = normalize(skill)
    for name, ability in SKILL_ABILITIES.items():
        if normalize(name) == target:
            return ability
    return None


def is_valid_skill(skill: str) -> bool:
    return skill_ability(skill) is not None


def skill_modifier(character: Character, skill: str) -> int:
    ability = skill_ability(skill)
    if ability is None:
        return 0
    modifier = character.ability_modifier(ability)
    if has_proficiency(character, "skills", skill):
        level = sum(entry.level for entry in character.progression.classes)
        modifier += proficiency_bonus_for_level(max(1, level))
    return modifier
