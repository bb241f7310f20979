"""Per-tick update driver for every plant of a garden."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Protocol, Sequence

from .errors import NonFiniteStateError
from .growth import GrowthModel
from .mathutils import is_finite
from .models import Garden, LightSource, Particle, Plant
from .parameters import DEFAULT_PARAMETERS, GrowthParameters
from .serialization import particle_to_dict
from .shape_matching import integrate_plant
from .surface import SurfaceQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Environment:
    surface: SurfaceQuery
    light: LightSource


@dataclass(frozen=True)
class SimulationStepResult:
    new_particles: list[Particle]
    halted_plants: list[str]


class PlantObserver(Protocol):
    def on_group_updated(self, particles: Sequence[Particle], plant_id: str) -> None:
        ...


@dataclass
class PlantChanges:
    added: list[int] = field(default_factory=list)
    updated: list[int] = field(default_factory=list)
    removed: list[int] = field(default_factory=list)


class SnapshotRecorder:
    """Observer keeping the latest particle snapshots and what changed per plant."""

    def __init__(self, params: GrowthParameters = DEFAULT_PARAMETERS) -> None:
        self.params = params
        self.snapshots: dict[str, dict[int, dict[str, object]]] = {}
        self.changes: dict[str, PlantChanges] = {}

    def on_group_updated(self, particles: Sequence[Particle], plant_id: str) -> None:
        previous = self.snapshots.get(plant_id, {})
        current = {particle.index: particle_to_dict(particle, self.params) for particle in particles}
        self.changes[plant_id] = PlantChanges(
            added=sorted(set(current) - set(previous)),
            updated=sorted(index for index in set(current) & set(previous) if current[index] != previous[index]),
            removed=sorted(set(previous) - set(current)),
        )
        self.snapshots[plant_id] = current

    def forget(self, plant_id: str) -> None:
        self.snapshots.pop(plant_id, None)
        self.changes.pop(plant_id, None)


def _check_finite(plant: Plant) -> None:
    for particle in plant.iter_particles():
        if not is_finite(particle.position):
            raise NonFiniteStateError(plant.plant_id, particle.index, "position")
        if not is_finite(particle.orientation):
            raise NonFiniteStateError(plant.plant_id, particle.index, "orientation")


def step_plant(plant: Plant, env: Environment, model: GrowthModel, dt: float) -> list[Particle]:
    """Run the growth passes of one tick on one plant, in their fixed order."""

    new_particles: list[Particle] = []
    particles = list(plant.iter_particles())
    for particle in particles:
        model.self_growth(particle, dt, env.surface)
    for particle in particles:
        model.plant_orientation(particle, dt, env.light, env.surface)

    if model.config.lateral_branching_enabled:
        branch = model.try_grow_branch(plant, dt, env.surface)
        if branch is not None:
            new_particles.append(branch)

    for particle in list(plant.iter_particles()):
        child = model.grow_apical_child(plant, particle, env.surface)
        if child is not None:
            new_particles.append(child)

    _check_finite(plant)
    if model.config.shape_matching_enabled:
        integrate_plant(plant, dt, model.params)
    for particle in plant.iter_particles():
        model.resolve_surface_contact(particle, env.surface)
        particle.sync_transform()
        particle.update_mass(model.params)
    _check_finite(plant)

    plant.time += dt
    return new_particles


def simulate_step(
    garden: Garden,
    env: Environment,
    model: GrowthModel,
    dt: float,
    observers: Iterable[PlantObserver] = (),
) -> SimulationStepResult:
    """Advance every running plant by ``dt`` and notify observers."""

    observers = list(observers)
    new_particles: list[Particle] = []
    halted_plants: list[str] = []
    for plant in list(garden.iter_active_plants()):
        try:
            new_particles.extend(step_plant(plant, env, model, dt))
        except NonFiniteStateError as exc:
            plant.halted = True
            plant.error = str(exc)
            halted_plants.append(plant.plant_id)
            logger.error("Halting %s: %s", plant.plant_id, exc)
            continue
        if model.config.rendering_enabled:
            for observer in observers:
                observer.on_group_updated(plant.particles, plant.plant_id)

    return SimulationStepResult(new_particles=new_particles, halted_plants=halted_plants)
