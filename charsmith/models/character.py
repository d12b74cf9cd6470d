from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator
from pydantic.alias_generators import to_camel

from charsmith.rules_core import ABILITY_ORDER, OPTIONAL_SOURCES, PROFICIENCY_KINDS, ability_key, ability_mod


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class AbilityScores(_Model):
    str: PositiveInt = 10
    dex: PositiveInt = 10
    con: PositiveInt = 10
    int: PositiveInt = 10
    wis: PositiveInt = 10
    cha: PositiveInt = 10

    def get(self, name: str) -> int:
        return getattr(self, ability_key(name))


class AbilityBonus(_Model):
    value: int
    source: str


class Reference(_Model):
    name: str = Field(min_length=1)
    source: str = "PHB"


class RaceReference(Reference):
    subrace: Optional[str] = None
    subrace_source: Optional[str] = None
    ability_choices: Dict[str, int] = {}


class ClassEntry(_Model):
    name: str = Field(min_length=1)
    source: str = "PHB"
    level: int = Field(default=1, ge=1)
    subclass: Optional[str] = None
    hit_die: Optional[int] = None
    # rolled hit points keyed by class level
    hit_points: Dict[int, int] = {}


class HistoryEntry(_Model):
    choices: Dict[str, Any] = {}
    timestamp: Optional[datetime] = None


class Progression(_Model):
    classes: List[ClassEntry] = []
    history: Dict[str, Dict[int, HistoryEntry]] = {}

    @field_validator("classes")
    @classmethod
    def _unique_class_names(cls, value: List[ClassEntry]) -> List[ClassEntry]:
        seen: Set[str] = set()
        for entry in value:
            key = entry.name.strip().lower()
            if key in seen:
                raise ValueError(f"duplicate class entry: {entry.name}")
            seen.add(key)
        return value


class SpellSlot(_Model):
    max: int = 0
    current: int = 0
    pact_magic: bool = False


class SpellReference(Reference):
    level: Optional[int] = None


class SpellcastingState(_Model):
    level: int = 0
    spells_known: List[SpellReference] = []
    spells_prepared: List[SpellReference] = []
    cantrips_known: int = 0
    spell_slots: Dict[int, SpellSlot] = {}
    spellcasting_ability: Optional[str] = None
    ritual_casting: bool = False

    @field_validator("spells_known", "spells_prepared", mode="before")
    @classmethod
    def _names_to_references(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [{"name": item} if isinstance(item, str) else item for item in value]
        return value

    def knows(self, name: str, source: Optional[str] = None) -> bool:
        return any(_same_spell(spell, name, source) for spell in self.spells_known)

    def has_prepared(self, name: str, source: Optional[str] = None) -> bool:
        return any(_same_spell(spell, name, source) for spell in self.spells_prepared)


def _same_spell(spell: SpellReference, name: str, source: Optional[str]) -> bool:
    if spell.name.lower() != name.strip().lower():
        return False
    return source is None or spell.source.lower() == source.lower()


class MulticlassSlots(_Model):
    is_casting_multiclass: bool = False
    caster_level: int = 0
    combined_slots: Dict[int, SpellSlot] = {}


class Spellcasting(_Model):
    classes: Dict[str, SpellcastingState] = {}
    multiclass: MulticlassSlots = Field(default_factory=MulticlassSlots)


class OptionalRecord(_Model):
    allowed: int = 0
    options: List[str] = []
    selected: List[str] = []


class KindOptionalProficiencies(OptionalRecord):
    """Per-source optional records; the inherited fields hold the combined view."""

    race: OptionalRecord = Field(default_factory=OptionalRecord)
    class_: OptionalRecord = Field(default_factory=OptionalRecord, alias="class")
    background: OptionalRecord = Field(default_factory=OptionalRecord)

    def source(self, name: str) -> OptionalRecord:
        if name not in OPTIONAL_SOURCES:
            raise ValueError(f"unknown proficiency source {name!r}")
        return self.class_ if name == "class" else getattr(self, name)

    def set_source(self, name: str, record: OptionalRecord) -> None:
        if name not in OPTIONAL_SOURCES:
            raise ValueError(f"unknown proficiency source {name!r}")
        setattr(self, "class_" if name == "class" else name, record)

    def sources(self) -> List[OptionalRecord]:
        return [self.source(name) for name in OPTIONAL_SOURCES]


class OptionalProficiencies(_Model):
    skills: KindOptionalProficiencies = Field(default_factory=KindOptionalProficiencies)
    tools: KindOptionalProficiencies = Field(default_factory=KindOptionalProficiencies)
    languages: KindOptionalProficiencies = Field(default_factory=KindOptionalProficiencies)

    def kind(self, name: str) -> KindOptionalProficiencies:
        if name not in PROFICIENCY_KINDS:
            raise ValueError(f"unknown proficiency kind {name!r}")
        return getattr(self, name)


class Proficiencies(_Model):
    skills: List[str] = []
    tools: List[str] = []
    languages: List[str] = []

    def kind(self, name: str) -> List[str]:
        if name not in PROFICIENCY_KINDS:
            raise ValueError(f"unknown proficiency kind {name!r}")
        return getattr(self, name)


def _empty_sources() -> Dict[str, Dict[str, Set[str]]]:
    return {kind: {} for kind in PROFICIENCY_KINDS}


class Trait(_Model):
    entry: Any = None
    source: str = ""


class Features(_Model):
    traits: Dict[str, Trait] = {}
    darkvision: int = 0
    resistances: List[str] = []


class Character(_Model):
    name: str = ""
    race: Optional[RaceReference] = None
    background: Optional[Reference] = None
    ability_scores: AbilityScores = Field(default_factory=AbilityScores)
    ability_bonuses: Dict[str, List[AbilityBonus]] = {}
    progression: Progression = Field(default_factory=Progression)
    spellcasting: Spellcasting = Field(default_factory=Spellcasting)
    optional_proficiencies: OptionalProficiencies = Field(default_factory=OptionalProficiencies)
    proficiencies: Proficiencies = Field(default_factory=Proficiencies)
    proficiency_sources: Dict[str, Dict[str, Set[str]]] = Field(default_factory=_empty_sources)
    features: Features = Field(default_factory=Features)
    background_feature: Optional[str] = None
    allowed_sources: Set[str] = {"PHB"}

    # --- Derived ---
    def total_ability(self, name: str) -> int:
        key = ability_key(name)
        total = self.ability_scores.get(key)
        total += sum(b.value for b in self.ability_bonuses.get(key, []))
        if self.race:
            total += self.race.ability_choices.get(key, 0)
        return total

    def ability_modifier(self, name: str) -> int:
        return ability_mod(self.total_ability(name))

    def total_abilities(self) -> Dict[str, int]:
        return {key: self.total_ability(key) for key in ABILITY_ORDER}

    def class_entry(self, name: str) -> Optional[ClassEntry]:
        target = name.strip().lower()
        for entry in self.progression.classes:
            if entry.name.strip().lower() == target:
                return entry
        return None


__all__ = [
    "AbilityBonus",
    "AbilityScores",
    "Character",
    "ClassEntry",
    "Features",
    "HistoryEntry",
    "KindOptionalProficiencies",
    "MulticlassSlots",
    "OptionalProficiencies",
    "OptionalRecord",
    "Proficiencies",
    "Progression",
    "RaceReference",
    "Reference",
    "SpellReference",
    "SpellSlot",
    "Spellcasting",
    "SpellcastingState",
    "Trait",
]
