"""Surface-anchored vine growth with oriented-particle shape matching."""

from .errors import NonFiniteStateError, SurfaceError, VineSimError
from .growth import GrowthModel
from .models import (
    Garden,
    GrowthStage,
    LightSource,
    Particle,
    Plant,
    PlantMaterial,
    PointLight,
    SurfaceMaterial,
)
from .parameters import DEFAULT_PARAMETERS, SPECIES_PARAMS, GrowthConfig, GrowthParameters
from .serialization import garden_to_dict, particle_to_dict, plant_to_dict
from .simulation import (
    Environment,
    PlantChanges,
    PlantObserver,
    SimulationStepResult,
    SnapshotRecorder,
    simulate_step,
    step_plant,
)
from .surface import MeshSurface, SurfaceQuery, Triangle, ground_plane

__all__ = [
    "DEFAULT_PARAMETERS",
    "Environment",
    "Garden",
    "GrowthConfig",
    "GrowthModel",
    "GrowthParameters",
    "GrowthStage",
    "LightSource",
    "MeshSurface",
    "NonFiniteStateError",
    "Particle",
    "Plant",
    "PlantChanges",
    "PlantMaterial",
    "PlantObserver",
    "PointLight",
    "SPECIES_PARAMS",
    "SimulationStepResult",
    "SnapshotRecorder",
    "SurfaceError",
    "SurfaceMaterial",
    "SurfaceQuery",
    "Triangle",
    "VineSimError",
    "garden_to_dict",
    "ground_plane",
    "particle_to_dict",
    "plant_to_dict",
    "simulate_step",
    "step_plant",
]
