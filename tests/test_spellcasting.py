import pytest

from charsmith.content.catalog import Catalog
from charsmith.engine.spellcasting import (
    SpellLimitInfo,
    add_known_spell,
    cantrips_known,
    caster_progression,
    clear_spell_selections,
    initialize_spellcasting_for_class,
    max_spell_level,
    multiclass_spell_slots,
    new_cantrips_at_level,
    new_spells_at_level,
    prepare_spell,
    prepared_limit,
    record_spell_selections,
    remove_known_spell,
    restore_spell_slots,
    spell_limit_info,
    spell_selections,
    spell_slots_for,
    spells_for_class,
    unprepare_spell,
    update_spell_slots,
    use_spell_slot,
)
from charsmith.models.catalog import CasterType
from charsmith.models.character import ClassEntry, SpellReference


@pytest.mark.parametrize(
    "class_name,level,expected",
    [
        ("Wizard", 1, 1),
        ("Wizard", 3, 2),
        ("Wizard", 17, 9),
        ("Wizard", 20, 9),
        ("Warlock", 1, 1),
        ("Warlock", 9, 5),
        ("Warlock", 20, 5),
        ("Paladin", 1, 0),
        ("Paladin", 2, 1),
        ("Paladin", 5, 1),
        ("Paladin", 10, 3),
        ("Fighter", 10, 0),
        ("Gunslinger", 5, 0),
    ],
)
def test_max_spell_level(catalog, class_name, level, expected):
    assert max_spell_level(catalog, class_name, level) == expected


def test_subclass_progression_used_when_class_has_none(catalog):
    assert caster_progression(catalog, "Fighter") is CasterType.NONE
    assert caster_progression(catalog, "Fighter", "Eldritch Knight") is CasterType.THIRD
    assert max_spell_level(catalog, "Fighter", 3, "Eldritch Knight") == 1
    assert max_spell_level(catalog, "Fighter", 9, "Eldritch Knight") == 2


def test_slot_tables(catalog):
    wizard = spell_slots_for(catalog, "Wizard", 5)
    assert {lvl: s.max for lvl, s in wizard.items()} == {1: 4, 2: 3, 3: 2}
    assert spell_slots_for(catalog, "Paladin", 1) == {}
    assert spell_slots_for(catalog, "Paladin", 2)[1].max == 2
    pact = spell_slots_for(catalog, "Warlock", 5)
    assert list(pact) == [3]
    assert pact[3].max == 2 and pact[3].pact_magic


def test_new_spells_at_level(catalog):
    assert new_spells_at_level(catalog, "Bard", 1) == 4
    assert new_spells_at_level(catalog, "Bard", 10) == 2
    assert new_spells_at_level(catalog, "Bard", 12) == 0
    assert new_spells_at_level(catalog, "Wizard", 1) == 6
    assert new_spells_at_level(catalog, "Wizard", 2) == 2
    assert new_spells_at_level(catalog, "Paladin", 3) == 0
    assert new_spells_at_level(catalog, "Ranger", 2) == 2
    assert new_spells_at_level(catalog, "Rogue", 4) == 0


def test_pact_fallback_without_table():
    data = {"class": [{"name": "Hexblade", "casterProgression": "pact", "spellcastingAbility": "cha"}]}
    cat = Catalog.from_data(data)
    assert new_spells_at_level(cat, "Hexblade", 1) == 2
    assert new_spells_at_level(cat, "Hexblade", 2) == 1


def test_cantrips(catalog):
    assert cantrips_known(catalog, "Wizard", 1) == 3
    assert cantrips_known(catalog, "Wizard", 0) == 0
    assert new_cantrips_at_level(catalog, "Wizard", 1) == 3
    assert new_cantrips_at_level(catalog, "Wizard", 4) == 1
    assert new_cantrips_at_level(catalog, "Wizard", 5) == 0
    assert cantrips_known(catalog, "Fighter", 5) == 0


def test_limit_info_unknown_class(character, catalog):
    assert spell_limit_info(character, catalog, "Gunslinger", 3) == SpellLimitInfo(type=None, limit=0)


def test_limit_info_known_caster(character, catalog):
    state = initialize_spellcasting_for_class(character, catalog, "Bard", 3)
    state.spells_known.extend([SpellReference(name="Cure Wounds"), SpellReference(name="Charm Person")])
    info = spell_limit_info(character, catalog, "Bard", 3)
    assert info.type == "known"
    assert info.limit == 6
    assert info.current == 2
    assert info.spellbook_limit is None


def test_limit_info_prepared_caster(character, catalog):
    # INT 12 -> +1
    initialize_spellcasting_for_class(character, catalog, "Wizard", 3)
    info = spell_limit_info(character, catalog, "Wizard", 3)
    assert info.type == "prepared"
    assert info.limit == 4
    assert info.spellbook_limit == 10
    assert info.spellbook_current == 0


def test_prepared_limit_is_at_least_one(character, catalog):
    # CHA 8 -> -1
    assert prepared_limit(character, catalog, "Paladin", 1) == 1
    assert prepared_limit(character, catalog, "Paladin", 5) == 4
    assert prepared_limit(character, catalog, "Fighter", 5) == 0


def test_initialize_state(character, catalog):
    state = initialize_spellcasting_for_class(character, catalog, "Wizard", 1)
    assert state.spellcasting_ability == "int"
    assert state.ritual_casting is True
    assert state.cantrips_known == 3
    assert state.spell_slots[1].max == 2
    assert character.spellcasting.classes["Wizard"] is state
    assert initialize_spellcasting_for_class(character, catalog, "Rogue", 1) is None
    assert "Rogue" not in character.spellcasting.classes
    assert initialize_spellcasting_for_class(character, catalog, "Warlock", 1).ritual_casting is False


def test_multiclass_combined_caster_level(character, catalog):
    character.progression.classes = [
        ClassEntry(name="Wizard", level=3),
        ClassEntry(name="Paladin", level=4),
    ]
    slots = multiclass_spell_slots(character, catalog)
    assert slots.is_casting_multiclass
    assert slots.caster_level == 5
    assert {lvl: s.max for lvl, s in slots.combined_slots.items()} == {1: 4, 2: 3, 3: 2}


def test_pact_magic_never_merged(character, catalog):
    character.progression.classes = [
        ClassEntry(name="Wizard", level=2),
        ClassEntry(name="Warlock", level=3),
    ]
    slots = multiclass_spell_slots(character, catalog)
    assert slots.is_casting_multiclass
    assert slots.caster_level == 2
    assert all(not s.pact_magic for s in slots.combined_slots.values())


def test_single_caster_is_not_multiclass(character, catalog):
    character.progression.classes = [ClassEntry(name="Wizard", level=5), ClassEntry(name="Rogue", level=2)]
    assert multiclass_spell_slots(character, catalog).is_casting_multiclass is False


def test_update_spell_slots_preserves_usage(character, catalog):
    character.progression.classes = [ClassEntry(name="Wizard", level=2)]
    state = initialize_spellcasting_for_class(character, catalog, "Wizard", 2)
    state.spell_slots[1].current = 1

    character.progression.classes[0].level = 3
    update_spell_slots(character, catalog)
    assert state.level == 3
    assert state.spell_slots[1].max == 4
    assert state.spell_slots[1].current == 1
    assert state.spell_slots[2].current == 2

    character.progression.classes[0].level = 1
    state.spell_slots[1].current = 4
    update_spell_slots(character, catalog)
    assert state.spell_slots[1].current == 2
    assert 2 not in state.spell_slots


def test_spells_for_class_filtered_by_level(catalog):
    names = [s.name for s in spells_for_class(catalog, "Wizard", max_level=1)]
    assert names == ["Fire Bolt", "Magic Missile"]


def test_add_known_spell_uses_catalog_record(character, catalog):
    initialize_spellcasting_for_class(character, catalog, "Wizard", 1)
    assert add_known_spell(character, catalog, "Wizard", "magic missile")
    spell = character.spellcasting.classes["Wizard"].spells_known[0]
    assert (spell.name, spell.source, spell.level) == ("Magic Missile", "PHB", 1)
    assert not add_known_spell(character, catalog, "Wizard", "Magic Missile")
    assert add_known_spell(character, catalog, "Wizard", "Homebrew Bolt", source="HB")
    assert len(character.spellcasting.classes["Wizard"].spells_known) == 2


def test_spell_changes_need_a_casting_class(character, catalog):
    assert not add_known_spell(character, catalog, "Fighter", "Fireball")
    assert not prepare_spell(character, catalog, "Fighter", "Fireball")
    assert not use_spell_slot(character, "Fighter", 1)
    assert not restore_spell_slots(character, "Fighter")
    assert character.spellcasting.classes == {}


def test_prepare_respects_limit(character, catalog):
    # level 1, INT 12 -> two prepared spells
    initialize_spellcasting_for_class(character, catalog, "Wizard", 1)
    for name in ("Fire Bolt", "Magic Missile", "Fireball"):
        add_known_spell(character, catalog, "Wizard", name)

    assert not prepare_spell(character, catalog, "Wizard", "Cure Wounds")
    assert prepare_spell(character, catalog, "Wizard", "Magic Missile")
    assert not prepare_spell(character, catalog, "Wizard", "Magic Missile")
    assert prepare_spell(character, catalog, "Wizard", "Fireball")
    assert not prepare_spell(character, catalog, "Wizard", "Fire Bolt")

    assert unprepare_spell(character, "Wizard", "Fireball")
    assert not unprepare_spell(character, "Wizard", "Fireball")
    assert prepare_spell(character, catalog, "Wizard", "Fire Bolt")
    names = [s.name for s in character.spellcasting.classes["Wizard"].spells_prepared]
    assert names == ["Magic Missile", "Fire Bolt"]


def test_forgetting_a_spell_unprepares_it(character, catalog):
    state = initialize_spellcasting_for_class(character, catalog, "Wizard", 1)
    add_known_spell(character, catalog, "Wizard", "Magic Missile")
    prepare_spell(character, catalog, "Wizard", "Magic Missile")

    assert remove_known_spell(character, "Wizard", "Magic Missile")
    assert state.spells_known == [] and state.spells_prepared == []
    assert not remove_known_spell(character, "Wizard", "Magic Missile")


def test_use_and_restore_slots(character, catalog):
    state = initialize_spellcasting_for_class(character, catalog, "Wizard", 1)
    assert use_spell_slot(character, "Wizard", 1)
    assert use_spell_slot(character, "Wizard", 1)
    assert not use_spell_slot(character, "Wizard", 1)
    assert not use_spell_slot(character, "Wizard", 2)
    assert state.spell_slots[1].current == 0

    assert restore_spell_slots(character, "Wizard")
    assert state.spell_slots[1].current == 2


def test_restore_all_refills_combined_slots(character, catalog):
    character.progression.classes = [ClassEntry(name="Wizard", level=3), ClassEntry(name="Paladin", level=4)]
    wizard = initialize_spellcasting_for_class(character, catalog, "Wizard", 3)
    paladin = initialize_spellcasting_for_class(character, catalog, "Paladin", 4)
    update_spell_slots(character, catalog)
    wizard.spell_slots[2].current = 0
    paladin.spell_slots[1].current = 1
    character.spellcasting.multiclass.combined_slots[3].current = 0

    assert restore_spell_slots(character)
    assert wizard.spell_slots[2].current == 2
    assert paladin.spell_slots[1].current == paladin.spell_slots[1].max
    assert character.spellcasting.multiclass.combined_slots[3].current == 2


def test_spell_selection_log(character):
    record_spell_selections(character, "Wizard", 1, ["Magic Missile", "Shield"])
    record_spell_selections(character, "Wizard", 2, ["Fireball"])
    record_spell_selections(character, "Wizard", 1, ["Sleep"])
    assert spell_selections(character, "Wizard", 1) == ["Sleep"]
    assert spell_selections(character, "Wizard", 3) == []

    assert clear_spell_selections(character, "Wizard", level=2) == 1
    assert spell_selections(character, "Wizard", 2) == []
    assert clear_spell_selections(character, "Wizard") == 1
    assert clear_spell_selections(character, "Bard") == 0
