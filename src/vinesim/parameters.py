"""Growth constants per vine species and the runtime growth options."""

from __future__ import annotations

from dataclasses import dataclass, fields
from math import pi
from typing import Tuple

Vector3 = Tuple[float, float, float]


@dataclass(frozen=True)
class GrowthParameters:
    # ellipsoid dimensions (width-x, width-y, height-z)
    initial_width: float = 0.05
    initial_height: float = 0.1
    max_width: float = 0.25
    max_height: float = 1.0
    width_growth_rate: float = 0.05
    height_growth_rate: float = 0.25
    density: float = 1.0
    min_mass: float = 1e-6
    depth_weight_decay: float = 0.8

    # orientation rules
    surface_adaptation_strength: float = 2.0
    phototropism_strength: float = 1.5
    min_light_distance: float = 1.0
    max_rotation_per_frame: float = 0.05
    normal_blend_threshold: float = 0.7
    normal_smoothing: float = 0.3
    growth_bias_max_angle: float = 0.05
    preferred_direction_smoothing: float = 0.1

    # penetration avoidance
    penetration_look_ahead: float = 0.2
    penetration_correction_strength: float = 3.0

    # branching
    min_branch_angle: float = pi / 6
    max_branch_angle: float = pi / 3
    branch_size_factor: float = 0.8
    branch_darkening: float = 0.85
    branch_selection_factor: float = 1.0
    branch_count_decay: float = 0.7
    max_children: int = 4

    # shape matching
    stiffness: float = 0.2
    # fraction of linear and angular velocity removed per second
    damping: float = 6.0
    gravity: Vector3 = (0.0, 0.0, 0.0)

    @property
    def max_dimensions(self) -> Vector3:
        return (self.max_width, self.max_width, self.max_height)

    @property
    def initial_dimensions(self) -> Vector3:
        return (self.initial_width, self.initial_width, self.initial_height)


SPECIES_PARAMS: dict[str, GrowthParameters] = {
    "ivy": GrowthParameters(),
    "creeper": GrowthParameters(
        max_width=0.18,
        max_height=0.8,
        width_growth_rate=0.06,
        height_growth_rate=0.4,
        surface_adaptation_strength=3.0,
        phototropism_strength=0.8,
        min_branch_angle=pi / 4,
        max_branch_angle=pi / 2.5,
        branch_selection_factor=1.4,
    ),
}

DEFAULT_PARAMETERS = SPECIES_PARAMS["ivy"]


@dataclass
class GrowthConfig:
    """Process-wide options; changes are picked up on the next tick."""

    growth_rate: float = 1.0
    lateral_branching_enabled: bool = True
    lateral_branch_probability: float = 0.5
    lateral_branch_cooldown: float = 2.0
    rendering_enabled: bool = True
    shape_matching_enabled: bool = True

    def update(self, **changes: object) -> None:
        known = {field.name for field in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"unknown growth options: {', '.join(sorted(unknown))}")
        for name, value in changes.items():
            setattr(self, name, value)
