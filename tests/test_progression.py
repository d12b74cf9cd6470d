from datetime import datetime, timedelta, timezone

import pytest

from charsmith.engine.config import EngineSettings
from charsmith.engine.proficiency import add_proficiency, select_optional
from charsmith.engine.progression import (
    add_class_level,
    asi_levels_for,
    calculate_max_hit_points,
    check_multiclass_requirements,
    choose_subclass,
    has_asi_available,
    hit_die_for,
    multiclass_options,
    proficiency_bonus,
    record_asi_choice,
    remove_class_level,
    remove_last_level,
    requirement_text,
    total_level,
)
from charsmith.models.character import AbilityScores, ClassEntry, HistoryEntry, RaceReference, Trait

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def at(minutes):
    return T0 + timedelta(minutes=minutes)


def test_first_class_level(character, catalog):
    result = add_class_level(character, catalog, "fighter", now=at(0))
    assert result.ok and result.level == 1 and result.class_name == "Fighter"
    entry = character.class_entry("Fighter")
    assert entry.hit_die == 10 and entry.source == "PHB"
    assert set(character.features.traits) == {"Fighting Style", "Second Wind"}
    assert character.features.traits["Second Wind"].source == "Fighter"
    assert character.progression.history["Fighter"][1].timestamp == at(0)
    assert character.optional_proficiencies.skills.class_.allowed == 2


def test_jump_to_level_stamps_every_new_level(character, catalog):
    result = add_class_level(character, catalog, "Fighter", 3, now=at(0))
    assert result.ok
    assert sorted(character.progression.history["Fighter"]) == [1, 2, 3]
    assert "Martial Archetype" in character.features.traits
    assert "Ability Score Improvement" not in character.features.traits


def test_existing_trait_not_overwritten(character, catalog):
    character.features.traits["Second Wind"] = Trait(entry="homebrew", source="Custom")
    add_class_level(character, catalog, "Fighter")
    assert character.features.traits["Second Wind"].entry == "homebrew"


def test_add_then_remove_restores_fresh_character(character, catalog):
    assert total_level(character) == 0
    add_class_level(character, catalog, "Wizard")
    assert total_level(character) == 1
    assert "Wizard" in character.spellcasting.classes

    result = remove_class_level(character, catalog, "Wizard")
    assert result.ok and result.level == 0
    assert total_level(character) == 0
    assert character.progression.classes == []
    assert character.spellcasting.classes == {}
    assert character.progression.history == {}
    assert character.features.traits == {}


def test_failures_leave_character_unchanged(character, catalog):
    add_class_level(character, catalog, "Fighter", 19)
    before = character.model_dump()

    assert not add_class_level(character, catalog, "Gunslinger").ok
    assert not add_class_level(character, catalog, "Wizard", 2).ok
    assert not add_class_level(character, catalog, "Fighter", 19).ok
    assert not remove_class_level(character, catalog, "Rogue").ok
    assert character.model_dump() == before

    assert add_class_level(character, catalog, "Fighter").ok
    result = add_class_level(character, catalog, "Fighter")
    assert not result.ok
    assert "20" in result.message


def test_max_level_setting(character, catalog):
    settings = EngineSettings(max_level=3)
    assert add_class_level(character, catalog, "Fighter", 3, settings=settings).ok
    assert not add_class_level(character, catalog, "Fighter", settings=settings).ok


def test_unmet_prerequisite_is_a_warning(character, catalog):
    add_class_level(character, catalog, "Fighter")
    result = add_class_level(character, catalog, "Wizard")
    assert result.ok
    assert result.warnings == ["Wizard multiclass requirements not met (INT 13)"]
    assert [c.name for c in character.progression.classes] == ["Fighter", "Wizard"]


def test_asi_only_on_asi_levels(character, catalog):
    add_class_level(character, catalog, "Fighter", 3, now=at(0))
    assert not has_asi_available(character, catalog)
    add_class_level(character, catalog, "Fighter", now=at(1))
    assert has_asi_available(character, catalog)
    add_class_level(character, catalog, "Fighter", now=at(2))
    assert not has_asi_available(character, catalog)


def test_asi_follows_most_recent_class(character, catalog):
    add_class_level(character, catalog, "Fighter", 4, now=at(0))
    add_class_level(character, catalog, "Rogue", now=at(5))
    assert not has_asi_available(character, catalog)


def test_asi_without_history_checks_every_class(character, catalog):
    character.progression.classes = [ClassEntry(name="Rogue", level=2), ClassEntry(name="Fighter", level=6)]
    assert has_asi_available(character, catalog)


def test_recorded_choice_consumes_asi(character, catalog):
    add_class_level(character, catalog, "Fighter", 4, now=at(0))
    result = record_asi_choice(character, catalog, "Fighter", 4, abilities={"STR": 1, "constitution": 1})
    assert result.ok
    assert character.total_ability("str") == 16
    assert character.total_ability("con") == 15
    assert not has_asi_available(character, catalog)

    # switching to a feat removes the earlier increases
    assert record_asi_choice(character, catalog, "Fighter", 4, feat="alert").ok
    assert character.total_ability("str") == 15
    assert character.progression.history["Fighter"][4].choices == {"feat": "Alert"}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"abilities": {"str": 3}},
        {"abilities": {"str": 1}},
        {"abilities": {"str": 1, "dex": 1}, "feat": "Alert"},
        {"feat": "Lucky"},
        {},
    ],
)
def test_invalid_asi_choices(character, catalog, kwargs):
    add_class_level(character, catalog, "Fighter", 4)
    assert not record_asi_choice(character, catalog, "Fighter", 4, **kwargs).ok
    assert character.ability_bonuses == {}


def test_asi_choice_requires_asi_level(character, catalog):
    add_class_level(character, catalog, "Fighter", 5)
    assert not record_asi_choice(character, catalog, "Fighter", 5, feat="Alert").ok
    assert not record_asi_choice(character, catalog, "Fighter", 8, feat="Alert").ok
    assert not record_asi_choice(character, catalog, "Wizard", 4, feat="Alert").ok


def test_asi_levels(catalog):
    assert asi_levels_for(catalog, "Fighter") == (4, 6, 8, 12, 14, 16, 19)
    assert asi_levels_for(catalog, "Rogue") == (4, 8, 10, 12, 16, 19)
    assert asi_levels_for(catalog, "Wizard") == (4, 8, 12, 16, 19)
    assert asi_levels_for(catalog, "Gunslinger") == (4, 8, 12, 16, 19)


def test_multiclass_options(character, catalog):
    add_class_level(character, catalog, "Fighter")
    options = multiclass_options(character, catalog)
    assert [o.name for o in options] == ["Bard", "Paladin", "Ranger", "Rogue", "Warlock", "Wizard"]
    by_name = {o.name: o for o in options}
    assert by_name["Rogue"].meets_requirements
    assert not by_name["Paladin"].meets_requirements
    assert by_name["Paladin"].requirement_text == "STR 13, CHA 13"

    everything = multiclass_options(character, catalog, ignore_requirements=True)
    assert all(o.meets_requirements for o in everything)


def test_multiclass_options_respect_allowed_sources(character, catalog):
    character.allowed_sources = {"PHB", "TCE"}
    names = [o.name for o in multiclass_options(character, catalog)]
    assert "Artificer" in names
    assert "Expert" not in names
    assert names.count("Fighter") == 1


def test_requirements_use_total_scores(character, catalog):
    assert not check_multiclass_requirements(character, catalog, "Bard")
    character.race = RaceReference(name="Elf", ability_choices={"cha": 5})
    assert check_multiclass_requirements(character, catalog, "Bard")
    assert check_multiclass_requirements(character, catalog, "Fighter")
    assert check_multiclass_requirements(character, catalog, "Gunslinger")


def test_total_abilities_include_bonuses(character, catalog):
    character.race = RaceReference(name="Elf", ability_choices={"dex": 2})
    add_class_level(character, catalog, "Fighter", 4)
    record_asi_choice(character, catalog, "Fighter", 4, abilities={"str": 1, "con": 1})
    assert character.total_abilities() == {"str": 16, "dex": 15, "con": 15, "int": 12, "wis": 10, "cha": 8}
    assert character.ability_modifier("Dexterity") == 2


def test_requirement_text(catalog):
    assert requirement_text(catalog.get_class("Fighter").multiclass_requirements) == "STR 13 or DEX 13"
    assert requirement_text(None) == ""


def test_hit_points(character, catalog):
    assert calculate_max_hit_points(character, catalog) == 10
    add_class_level(character, catalog, "Fighter")
    assert calculate_max_hit_points(character, catalog) == 12
    add_class_level(character, catalog, "Fighter", 3)
    assert calculate_max_hit_points(character, catalog) == 28
    character.class_entry("Fighter").hit_points[2] = 9
    assert calculate_max_hit_points(character, catalog) == 31
    add_class_level(character, catalog, "Wizard")
    assert calculate_max_hit_points(character, catalog) == 37


def test_hit_points_at_least_one_per_level(catalog, character):
    character.ability_scores = AbilityScores(con=1)
    assert calculate_max_hit_points(character, catalog) == 3
    character.progression.classes = [ClassEntry(name="Wizard", level=2)]
    assert calculate_max_hit_points(character, catalog) == 2


def test_hit_die_fallbacks(catalog):
    assert hit_die_for(catalog, "Wizard") == 6
    assert hit_die_for(catalog, "Sorcerer") == 6
    assert hit_die_for(catalog, "Gunslinger") == 8


def test_remove_level_drops_that_level(character, catalog):
    add_class_level(character, catalog, "Fighter", 3)
    character.class_entry("Fighter").hit_points[3] = 7
    result = remove_class_level(character, catalog, "Fighter")
    assert result.ok and result.level == 2
    assert 3 not in character.progression.history["Fighter"]
    assert 3 not in character.class_entry("Fighter").hit_points
    assert "Martial Archetype" not in character.features.traits
    assert "Action Surge" in character.features.traits


def test_removing_class_clears_its_grants(character, catalog):
    add_class_level(character, catalog, "Fighter")
    add_class_level(character, catalog, "Rogue")
    add_proficiency(character, "tools", "Thieves' Tools", "Rogue")
    add_proficiency(character, "tools", "Smith's Tools", "Fighter")
    remove_class_level(character, catalog, "Rogue")
    assert character.proficiencies.tools == ["Smith's Tools"]
    assert "Rogue" not in character.progression.history


def test_removing_first_class_clears_class_choices(character, catalog):
    add_class_level(character, catalog, "Fighter")
    assert select_optional(character, "skills", "class", "Athletics")
    remove_class_level(character, catalog, "Fighter")

    skills = character.optional_proficiencies.skills
    assert skills.class_.allowed == 0 and skills.class_.selected == []
    assert skills.allowed == 0 and skills.selected == []
    assert character.proficiencies.skills == []
    assert not select_optional(character, "skills", "class", "Athletics")


def test_class_choices_pass_to_remaining_class(character, catalog):
    add_class_level(character, catalog, "Fighter")
    add_class_level(character, catalog, "Wizard")
    select_optional(character, "skills", "class", "Athletics")
    remove_class_level(character, catalog, "Fighter")

    record = character.optional_proficiencies.skills.class_
    assert record.allowed == 2
    assert record.options == ["Arcana", "History", "Insight", "Investigation", "Medicine", "Religion"]
    assert record.selected == []
    assert character.proficiencies.skills == []


def test_remove_last_level_uses_most_recent_timestamp(character, catalog):
    add_class_level(character, catalog, "Fighter", 2, now=at(0))
    add_class_level(character, catalog, "Wizard", now=at(10))
    add_class_level(character, catalog, "Fighter", now=at(5))
    assert remove_last_level(character, catalog).class_name == "Wizard"
    assert remove_last_level(character, catalog).class_name == "Fighter"
    assert character.class_entry("Fighter").level == 2


def test_remove_last_level_tie_keeps_first_class(character, catalog):
    character.progression.classes = [ClassEntry(name="Fighter", level=1), ClassEntry(name="Rogue", level=1)]
    character.progression.history = {
        "Fighter": {1: HistoryEntry(timestamp=at(0))},
        "Rogue": {1: HistoryEntry(timestamp=at(0))},
    }
    assert remove_last_level(character, catalog).class_name == "Fighter"


def test_remove_last_level_without_history_uses_highest(character, catalog):
    character.progression.classes = [ClassEntry(name="Fighter", level=1), ClassEntry(name="Rogue", level=3)]
    assert remove_last_level(character, catalog).class_name == "Rogue"
    character.progression.classes = []
    assert not remove_last_level(character, catalog).ok


def test_subclass_features_and_spellcasting(character, catalog):
    add_class_level(character, catalog, "Fighter", 3)
    assert choose_subclass(character, catalog, "Fighter", "Champion").ok
    assert character.features.traits["Improved Critical"].source == "Champion"
    assert "Fighter" not in character.spellcasting.classes

    assert choose_subclass(character, catalog, "Fighter", "Eldritch Knight").ok
    assert "Improved Critical" not in character.features.traits
    assert "Weapon Bond" in character.features.traits
    state = character.spellcasting.classes["Fighter"]
    assert state.spellcasting_ability == "int"
    assert state.spell_slots[1].max == 2

    assert not choose_subclass(character, catalog, "Fighter", "Battle Master").ok
    assert not choose_subclass(character, catalog, "Wizard", "Evocation").ok


def test_multiclass_slots_follow_levels(character, catalog):
    add_class_level(character, catalog, "Wizard", 3)
    add_class_level(character, catalog, "Paladin", 4)
    multiclass = character.spellcasting.multiclass
    assert multiclass.is_casting_multiclass
    assert multiclass.caster_level == 5
    remove_class_level(character, catalog, "Wizard")
    assert character.spellcasting.multiclass.caster_level == 4


def test_proficiency_bonus(character, catalog):
    assert proficiency_bonus(character) == 2
    add_class_level(character, catalog, "Fighter", 5)
    assert proficiency_bonus(character) == 3
