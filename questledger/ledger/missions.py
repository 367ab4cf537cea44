"""
Adventure Mission Catalog

Static catalog of the adventure worlds and their missions. Each mission
awards exactly one trophy, named after the mission id:
``m-g1-1`` unlocks ``trophy-g1-1``.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class Mission:
    """A named adventure mission inside a world."""
    id: str
    world_id: str
    title: str

    @property
    def trophy_id(self) -> str:
        return trophy_id_for(self.id)


@dataclass(frozen=True)
class World:
    """An adventure world, one per grade band."""
    id: str
    title: str
    missions: Tuple[Mission, ...]


def trophy_id_for(mission_id: str) -> str:
    """Map ``m-gN-K`` to ``trophy-gN-K``."""
    return "trophy-" + mission_id[len("m-"):]


def _world(world_id: str, title: str, mission_titles: Tuple[str, ...]) -> World:
    missions = tuple(
        Mission(id=f"m-{world_id}-{index}", world_id=world_id, title=mission_title)
        for index, mission_title in enumerate(mission_titles, start=1)
    )
    return World(id=world_id, title=title, missions=missions)


WORLDS: Tuple[World, ...] = (
    _world("g1", "Guardians Valley", (
        "Creature Census", "Crystal Addition", "Seed Subtraction", "Forest Shapes",
        "Length Bridge", "Sun Clock", "Treasure Counting", "The Big 100",
        "Guardian Race", "Forest Ritual",
    )),
    _world("g2", "Desert of Enigmas", (
        "Dune Counting", "Beetle Sum", "Subtraction Pyramid", "Star Maps",
        "Sand Clock", "Oasis Symmetry", "Spice Market", "Desert Data",
        "Cactus Multiplication", "Ancestral Patterns",
    )),
    _world("g3", "Operations Island", (
        "Coral Multiplication", "Mangrove Fractions", "Rainforest Division", "Canopy Geometry",
        "Valley Statistics", "Peak Calculation", "Lighthouse Perimeter", "Obsidian Patterns",
        "Volcanic Probability", "High Priest",
    )),
    _world("g4", "Sky Laboratory", (
        "Cloud Metrics", "Decimal Radar", "Flight Fractions", "Aerial Symmetry",
        "Navigation Angles", "Atmospheric Average", "Data Detection", "Space Geometry",
        "Weather Sequence", "Chief Engineer",
    )),
    _world("g5", "Citadel of Time", (
        "Decimal Gears", "Temporal Fractions", "Energy Percentages", "Historical Average",
        "Solar Triangles", "Cubic Volume", "Chaos Coordinates", "Quantum Probability",
        "Divine Proportion", "The Master Clock",
    )),
)

MISSIONS: Dict[str, Mission] = {
    mission.id: mission
    for world in WORLDS
    for mission in world.missions
}


def get_mission(source_unit_id: str) -> Optional[Mission]:
    """Get the mission a source unit id refers to, if it is one."""
    return MISSIONS.get(source_unit_id)


def world_progress(unlocked_trophies) -> Dict[str, Dict[str, int]]:
    """Count unlocked trophies per world."""
    unlocked = set(unlocked_trophies)
    return {
        world.id: {
            "unlocked": sum(1 for mission in world.missions if mission.trophy_id in unlocked),
            "total": len(world.missions),
        }
        for world in WORLDS
    }
