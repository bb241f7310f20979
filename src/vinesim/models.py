"""Particles, plants and the capability interfaces they depend on."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from math import pi
from typing import Iterable, Optional, Protocol, Tuple

import numpy as np

from .mathutils import (
    LOCAL_FORWARD,
    WORLD_UP,
    as_vec3,
    normalize,
    quat_between,
    quat_identity,
    quat_normalize,
    quat_rotate,
    quat_to_matrix,
)
from .parameters import DEFAULT_PARAMETERS, GrowthParameters

Color = Tuple[float, float, float]

logger = logging.getLogger(__name__)


class GrowthStage(str, Enum):
    SEED = "Seed"
    GROWING = "Growing"
    FULLY_GROWN = "FullyGrown"
    HAS_APICAL_CHILD = "HasApicalChild"


class LightSource(Protocol):
    @property
    def position(self) -> np.ndarray:
        ...


class SurfaceMaterial(Protocol):
    color: Color

    def copy(self) -> "SurfaceMaterial":
        ...


@dataclass
class PointLight:
    position: np.ndarray

    def __post_init__(self) -> None:
        self.position = as_vec3(self.position)


@dataclass
class PlantMaterial:
    color: Color = (0.33, 0.55, 0.22)

    def copy(self) -> "PlantMaterial":
        return replace(self)

    def darkened(self, factor: float) -> "PlantMaterial":
        r, g, b = self.color
        return PlantMaterial(color=(r * factor, g * factor, b * factor))


def _zeros() -> np.ndarray:
    return np.zeros(3)


@dataclass(eq=False)
class Particle:
    """Oriented ellipsoid particle, the unit of vine growth.

    Hierarchy links are indices into the owning :class:`Plant`; the plant's
    particle list is the only owner of particle storage.
    """

    position: np.ndarray
    orientation: np.ndarray = field(default_factory=quat_identity)
    dimensions: np.ndarray = field(default_factory=lambda: np.array(DEFAULT_PARAMETERS.initial_dimensions))
    material: Optional[SurfaceMaterial] = None
    is_seed: bool = False
    is_lateral_branch: bool = False

    index: int = -1
    plant_id: str = ""
    parent: Optional[int] = None
    children: list[int] = field(default_factory=list)
    depth: int = 0
    has_apical_child: bool = False

    previous_position: Optional[np.ndarray] = None
    rest_position: np.ndarray = field(default_factory=_zeros)
    predicted_position: np.ndarray = field(default_factory=_zeros)
    target_position: np.ndarray = field(default_factory=_zeros)
    goal_position: np.ndarray = field(default_factory=_zeros)
    velocity: np.ndarray = field(default_factory=_zeros)

    previous_orientation: Optional[np.ndarray] = None
    rest_orientation: np.ndarray = field(default_factory=quat_identity)
    predicted_orientation: np.ndarray = field(default_factory=quat_identity)
    goal_orientation: np.ndarray = field(default_factory=quat_identity)
    rotation_matrix: np.ndarray = field(default_factory=lambda: np.eye(3))
    rest_rotation_matrix: np.ndarray = field(default_factory=lambda: np.eye(3))
    angular_velocity: np.ndarray = field(default_factory=_zeros)

    anchor: Optional[np.ndarray] = None
    surface_normal: Optional[np.ndarray] = None
    smoothed_normal: Optional[np.ndarray] = None
    last_valid_normal: Optional[np.ndarray] = None

    density: float = 1.0
    mass: float = 0.0
    weight: float = 0.0
    moment_matrix: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))

    bias_axis: Optional[np.ndarray] = None
    bias_angle: float = 0.0
    preferred_direction: Optional[np.ndarray] = None

    branch_count: int = 0
    last_branch_time: float = float("-inf")
    is_penetrating: bool = False

    # scratch state of the shape-matching group owned by this particle
    group_center: np.ndarray = field(default_factory=_zeros)
    group_rest_center: np.ndarray = field(default_factory=_zeros)
    group_moment: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    group_rotation: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self) -> None:
        self.position = as_vec3(self.position)
        self.orientation = quat_normalize(np.asarray(self.orientation, dtype=np.float64))
        self.dimensions = as_vec3(self.dimensions)
        self.rest_position = self.position.copy()
        self.predicted_position = self.position.copy()
        self.target_position = self.position.copy()
        self.goal_position = self.position.copy()
        self.rest_orientation = self.orientation.copy()
        self.predicted_orientation = self.orientation.copy()
        self.goal_orientation = self.orientation.copy()
        self.sync_transform()
        self.rest_rotation_matrix = self.rotation_matrix.copy()

    @property
    def direction(self) -> np.ndarray:
        return normalize(quat_rotate(self.orientation, LOCAL_FORWARD))

    @property
    def height(self) -> float:
        return float(self.dimensions[2])

    def is_fully_grown(self, params: GrowthParameters = DEFAULT_PARAMETERS) -> bool:
        return bool(np.all(self.dimensions >= np.array(params.max_dimensions)))

    def growth_stage(self, params: GrowthParameters = DEFAULT_PARAMETERS) -> GrowthStage:
        if self.is_seed:
            return GrowthStage.SEED
        if self.has_apical_child:
            return GrowthStage.HAS_APICAL_CHILD
        if self.is_fully_grown(params):
            return GrowthStage.FULLY_GROWN
        return GrowthStage.GROWING

    def set_orientation(self, orientation: np.ndarray) -> None:
        self.orientation = quat_normalize(orientation)
        self.sync_transform()

    def sync_transform(self) -> None:
        self.rotation_matrix = quat_to_matrix(self.orientation)

    def moment_for(self, rotation: np.ndarray) -> np.ndarray:
        """Ellipsoid moment matrix (m/5) R diag(x², y², z²) R_restᵀ for a rotation R."""

        x, y, z = self.dimensions
        return (self.mass / 5.0) * rotation @ np.diag([x * x, y * y, z * z]) @ self.rest_rotation_matrix.T

    def update_mass(self, params: GrowthParameters = DEFAULT_PARAMETERS) -> None:
        x, y, z = self.dimensions
        volume = 4.0 * pi / 3.0 * x * y * z
        self.mass = max(self.density * volume, params.min_mass)
        self.weight = self.mass * params.depth_weight_decay**self.depth
        self.moment_matrix = self.moment_for(self.rotation_matrix)


@dataclass
class Plant:
    """Arena owning every particle of one plant."""

    plant_id: str
    particles: list[Particle] = field(default_factory=list)
    time: float = 0.0
    halted: bool = False
    error: Optional[str] = None

    def __len__(self) -> int:
        return len(self.particles)

    @property
    def seed(self) -> Particle:
        return self.particles[0]

    def add_particle(self, particle: Particle, parent: Optional[Particle] = None) -> Particle:
        particle.index = len(self.particles)
        particle.plant_id = self.plant_id
        if parent is not None:
            particle.parent = parent.index
            particle.depth = parent.depth + 1
            parent.children.append(particle.index)
        self.particles.append(particle)
        return particle

    def get(self, index: int) -> Particle:
        return self.particles[index]

    def parent_of(self, particle: Particle) -> Optional[Particle]:
        if particle.parent is None:
            return None
        return self.particles[particle.parent]

    def children_of(self, particle: Particle) -> list[Particle]:
        return [self.particles[index] for index in particle.children]

    def group_of(self, particle: Particle) -> list[Particle]:
        """Shape-matching group: the particle, its parent and its children."""

        group = [particle]
        parent = self.parent_of(particle)
        if parent is not None:
            group.append(parent)
        group.extend(self.children_of(particle))
        return group

    def iter_particles(self) -> Iterable[Particle]:
        return iter(self.particles)


@dataclass
class Garden:
    """Independent plants growing on the same surface."""

    params: GrowthParameters = DEFAULT_PARAMETERS
    plants: dict[str, Plant] = field(default_factory=dict)

    def _plant_id_for(self, position: np.ndarray) -> str:
        base = "plant_" + "_".join(f"{value:.2f}" for value in position)
        plant_id = base
        suffix = 2
        while plant_id in self.plants:
            plant_id = f"{base}-{suffix}"
            suffix += 1
        return plant_id

    def create_seed_particle(
        self,
        position: np.ndarray,
        orientation: Optional[np.ndarray] = None,
        material: Optional[SurfaceMaterial] = None,
    ) -> Particle:
        """Start a new plant with a seed at ``position``."""

        seed = Particle(
            position=position,
            orientation=quat_between(LOCAL_FORWARD, WORLD_UP) if orientation is None else orientation,
            dimensions=np.array(self.params.max_dimensions),
            material=material if material is not None else PlantMaterial(),
            is_seed=True,
        )
        seed.density = self.params.density
        plant = Plant(plant_id=self._plant_id_for(seed.position))
        plant.add_particle(seed)
        seed.update_mass(self.params)
        self.plants[plant.plant_id] = plant
        logger.info("Seeded %s", plant.plant_id)
        return seed

    def find_plant(self, plant_id: str) -> Optional[Plant]:
        return self.plants.get(plant_id)

    def iter_plants(self) -> Iterable[Plant]:
        return iter(self.plants.values())

    def iter_active_plants(self) -> Iterable[Plant]:
        return (plant for plant in self.plants.values() if not plant.halted)
