from __future__ import annotations

from typing import Dict, FrozenSet, Tuple

ABILITY_ORDER = ("str", "dex", "con", "int", "wis", "cha")

ABILITY_NAMES = {
    "str": "strength",
    "dex": "dexterity",
    "con": "constitution",
    "int": "intelligence",
    "wis": "wisdom",
    "cha": "charisma",
}

PROFICIENCY_KINDS = ("skills", "tools", "languages")
OPTIONAL_SOURCES = ("race", "class", "background")

# Singular field names used by fixed catalog entries ({"skill": "Arcana"})
KIND_FIELDS = {"skills": "skill", "tools": "tool", "languages": "language"}

STANDARD_SKILLS: Tuple[str, ...] = (
    "Acrobatics",
    "Animal Handling",
    "Arcana",
    "Athletics",
    "Deception",
    "History",
    "Insight",
    "Intimidation",
    "Investigation",
    "Medicine",
    "Nature",
    "Perception",
    "Performance",
    "Persuasion",
    "Religion",
    "Sleight of Hand",
    "Stealth",
    "Survival",
)

SKILL_ABILITIES: Dict[str, str] = {
    "Acrobatics": "dex",
    "Animal Handling": "wis",
    "Arcana": "int",
    "Athletics": "str",
    "Deception": "cha",
    "History": "int",
    "Insight": "wis",
    "Intimidation": "cha",
    "Investigation": "int",
    "Medicine": "wis",
    "Nature": "int",
    "Perception": "wis",
    "Performance": "cha",
    "Persuasion": "cha",
    "Religion": "int",
    "Sleight of Hand": "dex",
    "Stealth": "dex",
    "Survival": "wis",
}

STANDARD_LANGUAGES: Tuple[str, ...] = (
    "Common",
    "Dwarvish",
    "Elvish",
    "Giant",
    "Gnomish",
    "Goblin",
    "Halfling",
    "Orc",
)

STANDARD_TOOLS: Tuple[str, ...] = (
    "Alchemist's Supplies",
    "Brewer's Supplies",
    "Calligrapher's Supplies",
    "Carpenter's Tools",
    "Cartographer's Tools",
    "Cobbler's Tools",
    "Cook's Utensils",
    "Glassblower's Tools",
    "Jeweler's Tools",
    "Leatherworker's Tools",
    "Mason's Tools",
    "Painter's Supplies",
    "Potter's Tools",
    "Smith's Tools",
    "Tinker's Tools",
    "Weaver's Tools",
    "Woodcarver's Tools",
    "Disguise Kit",
    "Forgery Kit",
    "Herbalism Kit",
    "Navigator's Tools",
    "Poisoner's Kit",
    "Thieves' Tools",
)

STANDARD_OPTIONS: Dict[str, Tuple[str, ...]] = {
    "skills": STANDARD_SKILLS,
    "tools": STANDARD_TOOLS,
    "languages": STANDARD_LANGUAGES,
}

# Simple SRD baseline hit-die map, used when a class record carries no hd
HIT_DIE = {
    "Barbarian": 12,
    "Fighter": 10,
    "Paladin": 10,
    "Ranger": 10,
    "Bard": 8,
    "Cleric": 8,
    "Druid": 8,
    "Monk": 8,
    "Rogue": 8,
    "Warlock": 8,
    "Sorcerer": 6,
    "Wizard": 6,
}

DEFAULT_ASI_LEVELS: Tuple[int, ...] = (4, 8, 12, 16, 19)

# Classes whose ASI table differs from the default
ASI_LEVEL_OVERRIDES: Dict[str, Tuple[int, ...]] = {
    "Fighter": (4, 6, 8, 12, 14, 16, 19),
    "Rogue": (4, 8, 10, 12, 16, 19),
}

RITUAL_CASTERS: FrozenSet[str] = frozenset({"Bard", "Cleric", "Druid", "Wizard"})

# New spells learned per level by known casters without a progression table
KNOWN_SPELL_FALLBACK = 2

# Full casters slots (L1–L9) – tuple per level (l1..l9); also the multiclass table
FULL_CASTER_SLOTS = {
    1: (2, 0, 0, 0, 0, 0, 0, 0, 0),
    2: (3, 0, 0, 0, 0, 0, 0, 0, 0),
    3: (4, 2, 0, 0, 0, 0, 0, 0, 0),
    4: (4, 3, 0, 0, 0, 0, 0, 0, 0),
    5: (4, 3, 2, 0, 0, 0, 0, 0, 0),
    6: (4, 3, 3, 0, 0, 0, 0, 0, 0),
    7: (4, 3, 3, 1, 0, 0, 0, 0, 0),
    8: (4, 3, 3, 2, 0, 0, 0, 0, 0),
    9: (4, 3, 3, 3, 1, 0, 0, 0, 0),
    10: (4, 3, 3, 3, 2, 0, 0, 0, 0),
    11: (4, 3, 3, 3, 2, 1, 0, 0, 0),
    12: (4, 3, 3, 3, 2, 1, 0, 0, 0),
    13: (4, 3, 3, 3, 2, 1, 1, 0, 0),
    14: (4, 3, 3, 3, 2, 1, 1, 0, 0),
    15: (4, 3, 3, 3, 2, 1, 1, 1, 0),
    16: (4, 3, 3, 3, 2, 1, 1, 1, 0),
    17: (4, 3, 3, 3, 2, 1, 1, 1, 1),
    18: (4, 3, 3, 3, 3, 1, 1, 1, 1),
    19: (4, 3, 3, 3, 3, 2, 1, 1, 1),
    20: (4, 3, 3, 3, 3, 2, 2, 1, 1),
}

# Pact magic (Warlock) – slots per level (level, #slots, slot level)
PACT_MAGIC = {
    1: (1, 1),
    2: (2, 1),
    3: (2, 2),
    4: (2, 2),
    5: (2, 3),
    6: (2, 3),
    7: (2, 4),
    8: (2, 4),
    9: (2, 5),
    10: (2, 5),
    11: (3, 5),
    12: (3, 5),
    13: (3, 5),
    14: (3, 5),
    15: (3, 5),
    16: (3, 5),
    17: (4, 5),
    18: (4, 5),
    19: (4, 5),
    20: (4, 5),
}


def ability_mod(score: int) -> int:
    return (score - 10) // 2


def proficiency_bonus_for_level(level: int) -> int:
    if level >= 17:
        return 6
    if level >= 13:
        return 5
    if level >= 9:
        return 4
    if level >= 5:
        return 3
    return 2


def ability_key(name: str) -> str:
    """Return the three-letter key for ``name`` ("Strength", "STR", "str")."""
    key = (name or "").strip().lower()
    if key in ABILITY_NAMES:
        return key
    for abv, full in ABILITY_NAMES.items():
        if full == key:
            return abv
    return key


def half_caster_level(level: int) -> int:
    return level // 2


def third_caster_level(level: int) -> int:
    return level // 3


def max_spell_level_for_caster_level(caster_level: int) -> int:
    # 1–2:1, 3–4:2, ... 15–16:8, 17+:9
    if caster_level <= 0:
        return 0
    return min(9, (caster_level + 1) // 2)


def pact_max_spell_level(level: int) -> int:
    if level <= 0:
        return 0
    return min(5, (level + 1) // 2)


def average_hit_die(faces: int) -> int:
    # Average HP per 5e (rounded up): d6=4, d8=5, d10=6, d12=7
    return faces // 2 + 1


def normalize(value: str) -> str:
    """Comparison key for names and proficiency values."""
    return (value or "").strip().lower()
