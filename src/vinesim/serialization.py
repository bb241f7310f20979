"""Serialization helpers for renderers, API and UI clients."""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from .models import Garden, Particle, Plant
from .parameters import DEFAULT_PARAMETERS, GrowthParameters


def _vector(value: Optional[np.ndarray]) -> Optional[Tuple[float, ...]]:
    if value is None:
        return None
    return tuple(float(component) for component in value)


def particle_to_dict(particle: Particle, params: GrowthParameters = DEFAULT_PARAMETERS) -> dict[str, object]:
    material = particle.material
    return {
        "index": particle.index,
        "plant_id": particle.plant_id,
        "parent": particle.parent,
        "children": list(particle.children),
        "depth": particle.depth,
        "is_seed": particle.is_seed,
        "is_lateral_branch": particle.is_lateral_branch,
        "has_apical_child": particle.has_apical_child,
        "stage": particle.growth_stage(params).value,
        "position": _vector(particle.position),
        "direction": _vector(particle.direction),
        "orientation": _vector(particle.orientation),
        "dimensions": _vector(particle.dimensions),
        "anchor": _vector(particle.anchor),
        "mass": particle.mass,
        "weight": particle.weight,
        "branch_count": particle.branch_count,
        "is_penetrating": particle.is_penetrating,
        "color": None if material is None else tuple(material.color),
    }


def plant_to_dict(plant: Plant, params: GrowthParameters = DEFAULT_PARAMETERS) -> dict[str, object]:
    return {
        "plant_id": plant.plant_id,
        "time": plant.time,
        "halted": plant.halted,
        "error": plant.error,
        "particles": [particle_to_dict(particle, params) for particle in plant.iter_particles()],
    }


def garden_to_dict(garden: Garden) -> dict[str, object]:
    return {"plants": [plant_to_dict(plant, garden.params) for plant in garden.iter_plants()]}
