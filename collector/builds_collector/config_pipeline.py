"""
Single Source of Truth (SSOT) for the class/spec and dungeon catalogue.

Scheduled pipeline runs and manual triggers should reference this
configuration. Never hardcode class, spec or encounter ids elsewhere.

To track a new season:
1. Replace the entries of DUNGEONS with the season's keystone dungeons
2. Toggle ``enabled`` on specs that should not be collected
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ClassSpec:
    """A class specialization as named by Warcraft Logs."""

    class_name: str                 # "Priest"
    spec_name: str                  # "Discipline"
    role: str = "dps"               # "dps", "healer" or "tank"
    enabled: bool = True

    @property
    def key(self) -> str:
        return f"{self.class_name}-{self.spec_name}"


@dataclass(frozen=True)
class Dungeon:
    """A keystone dungeon and the encounter id rankings are queried with."""

    encounter_id: int
    name: str
    slug: str
    enabled: bool = True


def _specs(class_name: str, *entries: tuple[str, str]) -> list[ClassSpec]:
    return [ClassSpec(class_name, spec, role) for spec, role in entries]


CLASS_SPECS: list[ClassSpec] = [
    *_specs("DeathKnight", ("Blood", "tank"), ("Frost", "dps"), ("Unholy", "dps")),
    *_specs("DemonHunter", ("Havoc", "dps"), ("Vengeance", "tank")),
    *_specs("Druid", ("Balance", "dps"), ("Feral", "dps"), ("Guardian", "tank"), ("Restoration", "healer")),
    *_specs("Evoker", ("Augmentation", "dps"), ("Devastation", "dps"), ("Preservation", "healer")),
    *_specs("Hunter", ("BeastMastery", "dps"), ("Marksmanship", "dps"), ("Survival", "dps")),
    *_specs("Mage", ("Arcane", "dps"), ("Fire", "dps"), ("Frost", "dps")),
    *_specs("Monk", ("Brewmaster", "tank"), ("Mistweaver", "healer"), ("Windwalker", "dps")),
    *_specs("Paladin", ("Holy", "healer"), ("Protection", "tank"), ("Retribution", "dps")),
    *_specs("Priest", ("Discipline", "healer"), ("Holy", "healer"), ("Shadow", "dps")),
    *_specs("Rogue", ("Assassination", "dps"), ("Outlaw", "dps"), ("Subtlety", "dps")),
    *_specs("Shaman", ("Elemental", "dps"), ("Enhancement", "dps"), ("Restoration", "healer")),
    *_specs("Warlock", ("Affliction", "dps"), ("Demonology", "dps"), ("Destruction", "dps")),
    *_specs("Warrior", ("Arms", "dps"), ("Fury", "dps"), ("Protection", "tank")),
]

# Season dungeons (encounter ids as used by the rankings endpoint)
DUNGEONS: list[Dungeon] = [
    Dungeon(12660, "Ara-Kara, City of Echoes", "arakara-city-of-echoes"),
    Dungeon(12669, "City of Threads", "city-of-threads"),
    Dungeon(60670, "Grim Batol", "grim-batol"),
    Dungeon(62290, "Mists of Tirna Scithe", "mists-of-tirna-scithe"),
    Dungeon(61822, "Siege of Boralus", "siege-of-boralus"),
    Dungeon(12662, "The Dawnbreaker", "the-dawnbreaker"),
    Dungeon(62286, "The Necrotic Wake", "the-necrotic-wake"),
    Dungeon(12652, "The Stonevault", "the-stonevault"),
]


def get_enabled_specs() -> list[ClassSpec]:
    """Get all specs enabled for collection, in catalogue order."""
    return [spec for spec in CLASS_SPECS if spec.enabled]


def get_enabled_dungeons() -> list[Dungeon]:
    """Get all dungeons enabled for collection, in catalogue order."""
    return [dungeon for dungeon in DUNGEONS if dungeon.enabled]


def get_spec(class_name: str, spec_name: str) -> ClassSpec:
    """
    Look up a spec in the catalogue.

    Raises:
        ValueError: If the class/spec pair is not catalogued
    """
    for spec in CLASS_SPECS:
        if spec.class_name == class_name and spec.spec_name == spec_name:
            return spec
    raise ValueError(f"Unknown spec '{class_name}-{spec_name}'")


def get_dungeon(encounter_id: int) -> Dungeon:
    """
    Look up a dungeon by encounter id.

    Raises:
        ValueError: If the encounter is not catalogued
    """
    for dungeon in DUNGEONS:
        if dungeon.encounter_id == encounter_id:
            return dungeon
    valid = ", ".join(str(d.encounter_id) for d in DUNGEONS)
    raise ValueError(f"Unknown encounter '{encounter_id}'. Valid encounters: {valid}")
