from __future__ import annotations

import copy
from typing import Any, Dict

from pydantic import ValidationError

from charsmith.content.validators import iter_problems
from charsmith.errors import CharacterLoadError
from charsmith.models.character import Character
from charsmith.rules_core import ABILITY_ORDER, ability_key

MAX_REPORTED_PROBLEMS = 5


def _check_character_schema(data: dict) -> None:
    problems = [f"- {pointer}: {message}" for pointer, message in iter_problems("character", data)]
    if not problems:
        return
    report = problems[:MAX_REPORTED_PROBLEMS]
    if len(problems) > MAX_REPORTED_PROBLEMS:
        report.append(f"  ... and {len(problems) - MAX_REPORTED_PROBLEMS} more")
    raise CharacterLoadError("Character does not match its schema:\n" + "\n".join(report))


def _parse_hit_dice(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip().lower()
        if "d" in text:
            text = text.split("d", 1)[1]
        try:
            return int(text)
        except ValueError:
            return None
    return value


def _migrate_class_entries(data: dict) -> dict:
    progression = data.get("progression")
    if not isinstance(progression, dict):
        return data
    for entry in progression.get("classes") or []:
        if not isinstance(entry, dict):
            continue
        if "levels" in entry:
            levels = entry.pop("levels")
            entry.setdefault("level", levels)
        if "hitDice" in entry:
            hit_dice = entry.pop("hitDice")
            if "hitDie" not in entry and "hit_die" not in entry:
                entry["hit_die"] = _parse_hit_dice(hit_dice)
        for key in ("hitPoints", "hit_points"):
            if isinstance(entry.get(key), list):
                # position 0 holds the roll for class level 1
                entry[key] = {level: value for level, value in enumerate(entry[key], start=1) if value}
    return data


def _migrate_history_legacy(data: dict) -> dict:
    if "progressionHistory" in data:
        history = data.pop("progressionHistory")
        progression = data.setdefault("progression", {})
        if isinstance(progression, dict) and not progression.get("history"):
            progression["history"] = history
    return data


def _migrate_spell_selections(data: dict) -> dict:
    progression = data.get("progression")
    if not isinstance(progression, dict) or not isinstance(progression.get("spellSelections"), dict):
        return data
    selections = progression.pop("spellSelections")
    history = progression.get("history") or {}
    progression["history"] = history
    for key, names in selections.items():
        class_name, _, level = str(key).rpartition("_")
        if not class_name or not level.isdigit():
            continue
        level_entry = history.setdefault(class_name, {}).setdefault(level, {})
        choices = level_entry.setdefault("choices", {})
        spells = [name.get("name") if isinstance(name, dict) else name for name in names or []]
        choices.setdefault("spells", spells)
    return data


def _migrate_abilities_legacy(data: dict) -> dict:
    for field in ("abilityScores", "abilityBonuses"):
        if isinstance(data.get(field), dict):
            data[field] = {ability_key(name): value for name, value in data[field].items()}
    race = data.get("race")
    if isinstance(race, dict) and isinstance(race.get("abilityChoices"), list):
        choices: Dict[str, int] = {}
        choice_sources = set()
        for choice in race["abilityChoices"]:
            if not isinstance(choice, dict):
                continue
            ability = ability_key(choice.get("ability") or choice.get("abilityScore") or "")
            if ability not in ABILITY_ORDER:
                continue
            value = next((v for v in (choice.get("value"), choice.get("amount")) if isinstance(v, int)), 1)
            choices[ability] = choices.get(ability, 0) + value
            choice_sources.add(choice.get("source") or "Race Choice")
        race["abilityChoices"] = choices
        # choices were also written out as bonuses; keep only one copy
        bonuses = data.get("abilityBonuses")
        if isinstance(bonuses, dict) and choice_sources:
            for ability, entries in bonuses.items():
                if isinstance(entries, list):
                    bonuses[ability] = [
                        b for b in entries if not (isinstance(b, dict) and b.get("source") in choice_sources)
                    ]
    if isinstance(race, dict):
        if not race.get("subrace"):
            race["subrace"] = None
        if not race.get("source"):
            race.pop("source", None)
    # an unnamed reference means nothing was picked
    for field in ("race", "background"):
        if isinstance(data.get(field), dict) and not data[field].get("name"):
            data[field] = None
    return data


def _migrate_traits_legacy(data: dict) -> dict:
    features = data.get("features")
    if not isinstance(features, dict) or not isinstance(features.get("traits"), dict):
        return data
    traits = features["traits"]
    for name, trait in list(traits.items()):
        if isinstance(trait, str):
            traits[name] = {"entry": trait, "source": ""}
        elif isinstance(trait, dict) and "entry" not in trait and "description" in trait:
            trait["entry"] = trait.pop("description")
    return data


# Public API


def migrate_character(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``data`` with legacy field shapes upgraded."""
    data = copy.deepcopy(data)
    data = _migrate_class_entries(data)
    data = _migrate_history_legacy(data)
    data = _migrate_spell_selections(data)
    data = _migrate_traits_legacy(data)
    data = _migrate_abilities_legacy(data)
    return data


def load_character(data: Dict[str, Any]) -> Character:
    if not isinstance(data, dict):
        raise CharacterLoadError("Character payload must be an object")
    data = migrate_character(data)
    _check_character_schema(data)
    try:
        return Character.model_validate(data)
    except ValidationError as e:
        raise CharacterLoadError(e.errors(include_url=False)) from e


def dump_character(character: Character) -> Dict[str, Any]:
    return character.model_dump(mode="json", by_alias=True)


__all__ = ["load_character", "dump_character", "migrate_character", "CharacterLoadError"]
