from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from charsmith.content.catalog import Catalog
from charsmith.engine.history import choices_for, record_choice
from charsmith.errors import CatalogLookupError
from charsmith.logging import get_logger
from charsmith.models.catalog import CasterType, ClassRecord, SubclassRecord
from charsmith.models.character import (
    Character,
    MulticlassSlots,
    SpellcastingState,
    SpellReference,
    SpellSlot,
)
from charsmith.rules_core import (
    FULL_CASTER_SLOTS,
    KNOWN_SPELL_FALLBACK,
    PACT_MAGIC,
    RITUAL_CASTERS,
    half_caster_level,
    max_spell_level_for_caster_level,
    normalize,
    pact_max_spell_level,
    third_caster_level,
)

log = get_logger(__name__)

SPELL_CHOICES = "spells"


@dataclass(frozen=True)
class SpellLimitInfo:
    type: Optional[str] = None  # "known" | "prepared"
    limit: int = 0
    current: int = 0
    spellbook_limit: Optional[int] = None
    spellbook_current: Optional[int] = None


def _class(catalog: Catalog, class_name: str) -> Optional[ClassRecord]:
    try:
        return catalog.get_class(class_name)
    except CatalogLookupError:
        log.debug("No class record for %s", class_name)
        return None


def _subclass(catalog: Catalog, class_name: str, subclass: Optional[str]) -> Optional[SubclassRecord]:
    if not subclass:
        return None
    try:
        return catalog.get_subclass(class_name, subclass)
    except CatalogLookupError:
        log.debug("No subclass record for %s: %s", class_name, subclass)
        return None


def caster_progression(catalog: Catalog, class_name: str, subclass: Optional[str] = None) -> CasterType:
    """The class's progression, or its subclass's when the class has none."""
    record = _class(catalog, class_name)
    if record is not None and record.caster_progression is not CasterType.NONE:
        return record.caster_progression
    sub = _subclass(catalog, class_name, subclass)
    if sub is not None:
        return sub.caster_progression
    return CasterType.NONE


def spellcasting_ability(catalog: Catalog, class_name: str, subclass: Optional[str] = None) -> Optional[str]:
    record = _class(catalog, class_name)
    if record is not None and record.spellcasting_ability:
        return record.spellcasting_ability
    sub = _subclass(catalog, class_name, subclass)
    return sub.spellcasting_ability if sub is not None else None


def effective_caster_level(progression: CasterType, level: int) -> int:
    if progression is CasterType.FULL:
        return level
    if progression is CasterType.HALF:
        return half_caster_level(level)
    if progression is CasterType.THIRD:
        return third_caster_level(level)
    return 0


def max_spell_level(catalog: Catalog, class_name: str, class_level: int, subclass: Optional[str] = None) -> int:
    progression = caster_progression(catalog, class_name, subclass)
    if progression is CasterType.NONE:
        return 0
    if progression is CasterType.PACT:
        return pact_max_spell_level(class_level)
    return max_spell_level_for_caster_level(effective_caster_level(progression, class_level))


def _standard_slots(caster_level: int) -> Dict[int, SpellSlot]:
    row = FULL_CASTER_SLOTS.get(caster_level)
    if not row:
        return {}
    return {i + 1: SpellSlot(max=n, current=n) for i, n in enumerate(row) if n}


def spell_slots_for(
    catalog: Catalog,
    class_name: str,
    level: int,
    subclass: Optional[str] = None,
) -> Dict[int, SpellSlot]:
    """Single-class slot table, keyed by spell level."""
    progression = caster_progression(catalog, class_name, subclass)
    if progression is CasterType.PACT:
        if level not in PACT_MAGIC:
            return {}
        count, slot_level = PACT_MAGIC[level]
        return {slot_level: SpellSlot(max=count, current=count, pact_magic=True)}
    return _standard_slots(effective_caster_level(progression, level))


def _table_value(table, level: int) -> int:
    # 5etools tables are indexed from class level 1
    if level <= 0 or not table:
        return 0
    return table[min(level, len(table)) - 1]


def cantrips_known(catalog: Catalog, class_name: str, level: int) -> int:
    record = _class(catalog, class_name)
    if record is None:
        return 0
    return _table_value(record.cantrip_progression, level)


def new_cantrips_at_level(catalog: Catalog, class_name: str, level: int) -> int:
    return max(0, cantrips_known(catalog, class_name, level) - cantrips_known(catalog, class_name, level - 1))


def spells_known_limit(catalog: Catalog, class_name: str, level: int) -> int:
    """Known-spell cap, or the spellbook size for spellbook casters."""
    record = _class(catalog, class_name)
    if record is None or level <= 0:
        return 0
    if record.spells_known_progression:
        return _table_value(record.spells_known_progression, level)
    if record.spells_known_progression_fixed:
        return sum(record.spells_known_progression_fixed[:level])
    return 0


def new_spells_at_level(catalog: Catalog, class_name: str, level: int) -> int:
    """How many spells the class learns on reaching ``level``."""
    record = _class(catalog, class_name)
    if record is None or level <= 0 or not record.is_spellcaster:
        return 0
    known = record.spells_known_progression
    if known and level <= len(known):
        previous = known[level - 2] if level >= 2 else 0
        return max(0, known[level - 1] - previous)
    fixed = record.spells_known_progression_fixed
    if fixed:
        return fixed[level - 1] if level <= len(fixed) else 0
    if record.prepared_spells:
        return 0
    if record.caster_progression is CasterType.PACT:
        return 2 if level == 1 else 1
    return KNOWN_SPELL_FALLBACK


def prepared_limit(character: Character, catalog: Catalog, class_name: str, class_level: int) -> int:
    record = _class(catalog, class_name)
    if record is None or not record.spellcasting_ability:
        return 0
    return max(1, class_level + character.ability_modifier(record.spellcasting_ability))


def spell_limit_info(character: Character, catalog: Catalog, class_name: str, class_level: int) -> SpellLimitInfo:
    record = _class(catalog, class_name)
    if record is None or not record.is_spellcaster:
        return SpellLimitInfo()
    state = character.spellcasting.classes.get(class_name)
    if state is None:
        return SpellLimitInfo()
    if not record.prepared_spells:
        return SpellLimitInfo(
            type="known",
            limit=spells_known_limit(catalog, class_name, class_level),
            current=len(state.spells_known),
        )
    return SpellLimitInfo(
        type="prepared",
        limit=prepared_limit(character, catalog, class_name, class_level),
        current=len(state.spells_prepared),
        spellbook_limit=spells_known_limit(catalog, class_name, class_level),
        spellbook_current=len(state.spells_known),
    )


def initialize_spellcasting_for_class(
    character: Character,
    catalog: Catalog,
    class_name: str,
    level: int,
    subclass: Optional[str] = None,
) -> Optional[SpellcastingState]:
    """Create a fresh spellcasting state for ``class_name``; None for non-casters."""
    ability = spellcasting_ability(catalog, class_name, subclass)
    if not ability:
        log.debug("%s is not a spellcaster, skipping", class_name)
        return None
    state = SpellcastingState(
        level=level,
        spell_slots=spell_slots_for(catalog, class_name, level, subclass),
        cantrips_known=cantrips_known(catalog, class_name, level),
        spellcasting_ability=ability,
        ritual_casting=is_ritual_caster(class_name),
    )
    character.spellcasting.classes[class_name] = state
    return state


def _carry_usage(new: Dict[int, SpellSlot], old: Dict[int, SpellSlot]) -> Dict[int, SpellSlot]:
    for slot_level, slot in new.items():
        previous = old.get(slot_level)
        if previous is not None:
            slot.current = max(0, min(previous.current, slot.max))
    return new


def multiclass_spell_slots(character: Character, catalog: Catalog) -> MulticlassSlots:
    """Combined slot table for characters with two or more spellcasting classes.

    Pact magic never merges into the combined table.
    """
    casting = 0
    caster_level = 0
    for entry in character.progression.classes:
        progression = caster_progression(catalog, entry.name, entry.subclass)
        if progression is CasterType.NONE:
            continue
        casting += 1
        caster_level += effective_caster_level(progression, entry.level)

    if casting < 2:
        return MulticlassSlots()
    previous = character.spellcasting.multiclass.combined_slots
    return MulticlassSlots(
        is_casting_multiclass=True,
        caster_level=caster_level,
        combined_slots=_carry_usage(_standard_slots(caster_level), previous),
    )


def update_spell_slots(character: Character, catalog: Catalog) -> None:
    """Recompute slot maxima for every casting class, keeping slots already spent."""
    for entry in character.progression.classes:
        state = character.spellcasting.classes.get(entry.name)
        if state is None:
            continue
        slots = spell_slots_for(catalog, entry.name, entry.level, entry.subclass)
        state.spell_slots = _carry_usage(slots, state.spell_slots)
        state.level = entry.level
        state.cantrips_known = cantrips_known(catalog, entry.name, entry.level)
    character.spellcasting.multiclass = multiclass_spell_slots(character, catalog)
    log.debug("Updated spell slots")


def spells_for_class(catalog: Catalog, class_name: str, max_level: Optional[int] = None):
    spells = catalog.spells_for_class(class_name)
    if max_level is None:
        return spells
    return [s for s in spells if s.level <= max_level]


def is_ritual_caster(class_name: str) -> bool:
    return normalize(class_name) in {normalize(c) for c in RITUAL_CASTERS}




# --- Known and prepared spells ---


def _state(character: Character, class_name: str) -> Optional[SpellcastingState]:
    state = character.spellcasting.classes.get(class_name)
    if state is None:
        log.warning("%s has no spellcasting state", class_name)
    return state


def _matching(spells: List[SpellReference], name: str) -> List[SpellReference]:
    target = normalize(name)
    return [spell for spell in spells if normalize(spell.name) == target]


def add_known_spell(
    character: Character,
    catalog: Catalog,
    class_name: str,
    spell_name: str,
    source: Optional[str] = None,
) -> bool:
    """Add a spell to ``class_name``'s known list; False when it is already there."""
    state = _state(character, class_name)
    if state is None:
        return False
    try:
        record = catalog.get_spell(spell_name, source)
    except CatalogLookupError:
        # homebrew spells are kept by name
        spell = SpellReference(name=spell_name, source=source or "PHB")
    else:
        spell = SpellReference(name=record.name, source=record.source, level=record.level)
    if state.knows(spell.name, spell.source):
        log.warning("%s already knows %s", class_name, spell.name)
        return False
    state.spells_known.append(spell)
    log.info("%s learned %s", class_name, spell.name)
    return True


def remove_known_spell(character: Character, class_name: str, spell_name: str) -> bool:
    """Forget a spell; a prepared copy is dropped with it."""
    state = _state(character, class_name)
    if state is None:
        return False
    known = _matching(state.spells_known, spell_name)
    if not known:
        log.warning("%s does not know %s", class_name, spell_name)
        return False
    state.spells_known = [s for s in state.spells_known if s not in known]
    state.spells_prepared = [s for s in state.spells_prepared if normalize(s.name) != normalize(spell_name)]
    return True


def prepare_spell(character: Character, catalog: Catalog, class_name: str, spell_name: str) -> bool:
    state = _state(character, class_name)
    if state is None:
        return False
    known = _matching(state.spells_known, spell_name)
    if not known:
        log.warning("Cannot prepare %s: %s does not know it", spell_name, class_name)
        return False
    if state.has_prepared(spell_name):
        log.warning("%s is already prepared", spell_name)
        return False
    limit = prepared_limit(character, catalog, class_name, state.level)
    if len(state.spells_prepared) >= limit:
        log.warning("Cannot prepare %s: %s already has %d prepared", spell_name, class_name, limit)
        return False
    state.spells_prepared.append(known[0].model_copy())
    return True


def unprepare_spell(character: Character, class_name: str, spell_name: str) -> bool:
    state = _state(character, class_name)
    if state is None or not state.has_prepared(spell_name):
        return False
    state.spells_prepared = [s for s in state.spells_prepared if normalize(s.name) != normalize(spell_name)]
    return True


# --- Slots ---


def use_spell_slot(character: Character, class_name: str, spell_level: int) -> bool:
    """Spend one slot of ``spell_level``; False when none is left."""
    state = _state(character, class_name)
    if state is None:
        return False
    slot = state.spell_slots.get(spell_level)
    if slot is None or slot.current <= 0:
        log.warning("%s has no level %d slot left", class_name, spell_level)
        return False
    slot.current -= 1
    return True


def restore_spell_slots(character: Character, class_name: Optional[str] = None) -> bool:
    """Refill the slots of one class, or of every class and the combined table."""
    if class_name is not None:
        state = _state(character, class_name)
        if state is None:
            return False
        states = [state]
    else:
        states = list(character.spellcasting.classes.values())
        for slot in character.spellcasting.multiclass.combined_slots.values():
            slot.current = slot.max
    for state in states:
        for slot in state.spell_slots.values():
            slot.current = slot.max
    return True


# --- Per-level spell selections ---


def record_spell_selections(
    character: Character,
    class_name: str,
    level: int,
    spell_names: Iterable[str],
    now: Optional[datetime] = None,
) -> None:
    """Replace the spells picked for ``class_name`` at ``level``."""
    record_choice(character, class_name, level, {SPELL_CHOICES: list(spell_names)}, now)


def spell_selections(character: Character, class_name: str, level: int) -> List[str]:
    return list(choices_for(character, class_name, level).get(SPELL_CHOICES, []))


def clear_spell_selections(character: Character, class_name: str, level: Optional[int] = None) -> int:
    """Drop recorded spell picks; returns how many levels had some."""
    levels = character.progression.history.get(class_name, {})
    cleared = 0
    for class_level, entry in levels.items():
        if level is not None and class_level != level:
            continue
        if entry.choices.pop(SPELL_CHOICES, None) is not None:
            cleared += 1
    return cleared


__all__ = [
    "SPELL_CHOICES",
    "SpellLimitInfo",
    "add_known_spell",
    "cantrips_known",
    "caster_progression",
    "clear_spell_selections",
    "effective_caster_level",
    "initialize_spellcasting_for_class",
    "is_ritual_caster",
    "max_spell_level",
    "multiclass_spell_slots",
    "new_cantrips_at_level",
    "new_spells_at_level",
    "prepare_spell",
    "prepared_limit",
    "record_spell_selections",
    "remove_known_spell",
    "restore_spell_slots",
    "spell_limit_info",
    "spell_selections",
    "spell_slots_for",
    "spells_for_class",
    "spells_known_limit",
    "spellcasting_ability",
    "unprepare_spell",
    "update_spell_slots",
    "use_spell_slot",
]
