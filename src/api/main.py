"""FastAPI app exposing the vine growth simulation to the viewer UI."""

from __future__ import annotations

from typing import Optional

import numpy as np
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from vinesim import (
    SPECIES_PARAMS,
    Environment,
    Garden,
    GrowthConfig,
    GrowthModel,
    MeshSurface,
    PlantMaterial,
    PointLight,
    SnapshotRecorder,
    SurfaceError,
    garden_to_dict,
    ground_plane,
    particle_to_dict,
    plant_to_dict,
    simulate_step,
)
from vinesim.surface import SurfaceQuery

app = FastAPI(title="Vine Growth Simulation API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class GardenResetRequest(BaseModel):
    species: str = "ivy"
    rng_seed: Optional[int] = None
    surface_mesh: Optional[str] = Field(
        default=None,
        description="Path of a mesh file to grow on; a ground plane is used when omitted.",
    )
    ground_size: float = Field(default=50.0, gt=0.0)
    ground_height: float = 0.0


class SeedRequest(BaseModel):
    position: tuple[float, float, float]
    orientation: Optional[tuple[float, float, float, float]] = Field(
        default=None,
        description="Quaternion (w, x, y, z); the seed grows upwards when omitted.",
    )
    color: Optional[tuple[float, float, float]] = None


class StepRequest(BaseModel):
    dt: float = Field(default=1.0 / 60.0, gt=0.0)
    ticks: int = Field(default=1, ge=1, le=10000)
    light_position: tuple[float, float, float] = (0.0, 20.0, 0.0)


class ConfigRequest(BaseModel):
    growth_rate: Optional[float] = Field(default=None, ge=0.0)
    lateral_branching_enabled: Optional[bool] = None
    lateral_branch_probability: Optional[float] = Field(default=None, ge=0.0)
    lateral_branch_cooldown: Optional[float] = Field(default=None, ge=0.0)
    rendering_enabled: Optional[bool] = None
    shape_matching_enabled: Optional[bool] = None


def _config_to_dict(config: GrowthConfig) -> dict[str, object]:
    return {
        "growth_rate": config.growth_rate,
        "lateral_branching_enabled": config.lateral_branching_enabled,
        "lateral_branch_probability": config.lateral_branch_probability,
        "lateral_branch_cooldown": config.lateral_branch_cooldown,
        "rendering_enabled": config.rendering_enabled,
        "shape_matching_enabled": config.shape_matching_enabled,
    }


def _build_surface(request: GardenResetRequest | None) -> SurfaceQuery:
    if request and request.surface_mesh:
        return MeshSurface.from_file(request.surface_mesh)
    if request:
        return ground_plane(size=request.ground_size, height=request.ground_height)
    return ground_plane()


def _build_model(request: GardenResetRequest | None) -> GrowthModel:
    species = request.species if request else "ivy"
    params = SPECIES_PARAMS.get(species)
    if params is None:
        raise HTTPException(status_code=404, detail="Species not found")
    rng = np.random.default_rng(request.rng_seed if request else None)
    return GrowthModel(params=params, config=CURRENT_CONFIG, rng=rng)


CURRENT_CONFIG = GrowthConfig()
CURRENT_MODEL = _build_model(None)
CURRENT_SURFACE = _build_surface(None)
CURRENT_GARDEN = Garden(params=CURRENT_MODEL.params)
RECORDER = SnapshotRecorder(CURRENT_MODEL.params)


@app.get("/state")
def get_state() -> dict[str, object]:
    return {"garden": garden_to_dict(CURRENT_GARDEN)}


@app.post("/reset")
def reset_garden(request: GardenResetRequest | None = None) -> dict[str, object]:
    global CURRENT_GARDEN, CURRENT_MODEL, CURRENT_SURFACE, RECORDER
    model = _build_model(request)
    try:
        surface = _build_surface(request)
    except SurfaceError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    CURRENT_MODEL = model
    CURRENT_SURFACE = surface
    CURRENT_GARDEN = Garden(params=model.params)
    RECORDER = SnapshotRecorder(model.params)
    return {"garden": garden_to_dict(CURRENT_GARDEN)}


@app.post("/seed")
def plant_seed(request: SeedRequest) -> dict[str, object]:
    material = PlantMaterial(color=request.color) if request.color else PlantMaterial()
    orientation = np.array(request.orientation) if request.orientation else None
    seed = CURRENT_GARDEN.create_seed_particle(np.array(request.position), orientation, material)
    plant = CURRENT_GARDEN.find_plant(seed.plant_id)
    return {"plant": plant_to_dict(plant, CURRENT_GARDEN.params)}


@app.get("/plants/{plant_id}")
def get_plant(plant_id: str) -> dict[str, object]:
    plant = CURRENT_GARDEN.find_plant(plant_id)
    if not plant:
        raise HTTPException(status_code=404, detail="Plant not found")
    return {"plant": plant_to_dict(plant, CURRENT_GARDEN.params)}


@app.post("/step")
def step_simulation(request: StepRequest) -> dict[str, object]:
    env = Environment(surface=CURRENT_SURFACE, light=PointLight(np.array(request.light_position)))
    new_particles: list[dict[str, object]] = []
    halted_plants: list[str] = []
    for _ in range(request.ticks):
        result = simulate_step(CURRENT_GARDEN, env, CURRENT_MODEL, request.dt, observers=[RECORDER])
        new_particles.extend(particle_to_dict(particle, CURRENT_MODEL.params) for particle in result.new_particles)
        halted_plants.extend(result.halted_plants)
    return {
        "result": {
            "new_particles": new_particles,
            "halted_plants": halted_plants,
            "changes": {
                plant_id: {"added": changes.added, "updated": changes.updated, "removed": changes.removed}
                for plant_id, changes in RECORDER.changes.items()
            },
        },
        "garden": garden_to_dict(CURRENT_GARDEN),
    }


@app.get("/config")
def get_config() -> dict[str, object]:
    return {"config": _config_to_dict(CURRENT_CONFIG)}


@app.post("/config")
def update_config(request: ConfigRequest) -> dict[str, object]:
    CURRENT_CONFIG.update(**request.model_dump(exclude_none=True))
    return {"config": _config_to_dict(CURRENT_CONFIG)}
