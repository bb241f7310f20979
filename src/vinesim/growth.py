"""Growth, orientation and branching rules for vine particles."""

from __future__ import annotations

import logging
from math import pi
from typing import Optional

import numpy as np

from .mathutils import (
    LOCAL_FORWARD,
    WORLD_UP,
    WORLD_X,
    angle_between,
    any_perpendicular,
    clamp,
    closest_point_on_triangle,
    normalize,
    project_onto_plane,
    quat_from_axis_angle,
    quat_from_matrix,
    quat_identity,
    quat_multiply,
    quat_normalize,
    quat_rotate,
    quat_to_matrix,
    smooth_lerp,
    triangle_normal,
)
from .models import LightSource, Particle, Plant, SurfaceMaterial
from .parameters import DEFAULT_PARAMETERS, GrowthConfig, GrowthParameters
from .shape_matching import update_particle_group_center_of_mass
from .surface import SurfaceQuery

logger = logging.getLogger(__name__)

GROWTH_EPSILON = 1e-9
AXIS_EPSILON = 1e-6


def _rotate_particle(particle: Particle, axis: np.ndarray, angle: float) -> bool:
    """Premultiply the particle orientation by a world-space rotation."""

    if angle == 0.0 or np.linalg.norm(axis) < AXIS_EPSILON:
        return False
    rotation = quat_from_axis_angle(axis, angle)
    particle.set_orientation(quat_multiply(rotation, particle.orientation))
    return True


def _blend_preferred_direction(particle: Particle, direction: np.ndarray, factor: float) -> None:
    if particle.preferred_direction is None:
        particle.preferred_direction = normalize(direction)
        return
    blended = normalize(particle.preferred_direction + (direction - particle.preferred_direction) * factor)
    particle.preferred_direction = blended if blended.any() else normalize(direction)


def lift_to_surface(point: np.ndarray, surface: SurfaceQuery) -> np.ndarray:
    """Move ``point`` onto the front side of its closest surface triangle."""

    triangle = surface.closest_triangle(point)
    normal = triangle_normal(triangle.a, triangle.b, triangle.c)
    closest = closest_point_on_triangle(point, triangle.a, triangle.b, triangle.c)
    offset = float(np.dot(point - closest, normal))
    if offset >= 0.0:
        return point
    return point - normal * offset


def _place_in_rest_frame(child: Particle, parent: Particle) -> None:
    """Express a new child's rest pose in the undeformed frame of its parent's group."""

    unrotate = parent.group_rotation.T
    child.rest_position = parent.rest_position + unrotate @ (child.position - parent.position)
    child.rest_orientation = quat_normalize(quat_multiply(quat_from_matrix(unrotate), child.orientation))
    child.rest_rotation_matrix = quat_to_matrix(child.rest_orientation)


def _branch_material(material: Optional[SurfaceMaterial], factor: float) -> Optional[SurfaceMaterial]:
    if material is None:
        return None
    branch = material.copy()
    r, g, b = branch.color
    branch.color = (r * factor, g * factor, b * factor)
    return branch


class GrowthModel:
    """Growth engine applying the vine rules to particles of a plant.

    All randomness (growth bias, branch angles, branch selection) is drawn
    from ``rng`` so that a seeded generator gives reproducible plants.
    """

    def __init__(
        self,
        params: GrowthParameters = DEFAULT_PARAMETERS,
        config: Optional[GrowthConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.params = params
        self.config = config if config is not None else GrowthConfig()
        self.rng = rng if rng is not None else np.random.default_rng()

    # -- spawning ---------------------------------------------------------

    def init_growth_bias(self, particle: Particle) -> None:
        if particle.is_seed:
            return
        axis = normalize(self.rng.normal(size=3))
        while not axis.any():
            axis = normalize(self.rng.normal(size=3))
        limit = self.params.growth_bias_max_angle
        particle.bias_axis = axis
        particle.bias_angle = float(self.rng.uniform(-limit, limit))

    def _spawn(
        self,
        plant: Plant,
        parent: Particle,
        position: np.ndarray,
        orientation: np.ndarray,
        dimensions: np.ndarray,
        material: Optional[SurfaceMaterial],
        is_lateral_branch: bool,
        surface: Optional[SurfaceQuery] = None,
    ) -> Particle:
        if surface is not None:
            position = lift_to_surface(position, surface)
        child = Particle(
            position=position,
            orientation=orientation,
            dimensions=np.minimum(dimensions, np.array(self.params.max_dimensions)),
            material=material,
            is_lateral_branch=is_lateral_branch,
        )
        child.density = self.params.density
        plant.add_particle(child, parent)
        _place_in_rest_frame(child, parent)
        self.init_growth_bias(child)
        child.update_mass(self.params)
        update_particle_group_center_of_mass(plant, parent)
        update_particle_group_center_of_mass(plant, child)
        return child

    # -- growth -----------------------------------------------------------

    def self_growth(self, particle: Particle, dt: float, surface: SurfaceQuery) -> bool:
        """Grow the particle towards its size caps; returns False once fully grown."""

        if particle.is_seed or particle.is_fully_grown(self.params):
            return False
        params = self.params
        step = max(dt, 0.0) * self.config.growth_rate
        rates = np.array([params.width_growth_rate, params.width_growth_rate, params.height_growth_rate])
        caps = np.array(params.max_dimensions)
        grown = np.minimum(particle.dimensions + rates * step, caps)
        grown = np.where(caps - grown < GROWTH_EPSILON, caps, grown)
        particle.dimensions = np.maximum(grown, particle.dimensions)
        particle.update_mass(params)
        self.update_anchor(particle, surface)
        return True

    def update_anchor(self, particle: Particle, surface: SurfaceQuery) -> None:
        triangle = surface.closest_triangle(particle.position)
        particle.anchor = closest_point_on_triangle(particle.position, triangle.a, triangle.b, triangle.c)
        normal = triangle_normal(triangle.a, triangle.b, triangle.c)
        if not normal.any():
            # degenerate triangle: keep the previous normals
            return
        previous = particle.last_valid_normal
        if (
            previous is not None
            and particle.smoothed_normal is not None
            and float(np.dot(previous, normal)) > self.params.normal_blend_threshold
        ):
            smoothed = normalize(smooth_lerp(particle.smoothed_normal, normal, self.params.normal_smoothing))
            particle.smoothed_normal = smoothed if smoothed.any() else normal.copy()
        else:
            particle.smoothed_normal = normal.copy()
        particle.surface_normal = normal
        particle.last_valid_normal = normal.copy()

    # -- penetration ------------------------------------------------------

    def check_penetration(self, particle: Particle, surface: SurfaceQuery) -> bool:
        if particle.is_seed:
            particle.is_penetrating = False
            return False
        direction = particle.direction
        half_height = particle.height / 2.0
        look_ahead = particle.position + direction * (half_height + self.params.penetration_look_ahead)
        triangle = surface.closest_triangle(look_ahead)
        closest = closest_point_on_triangle(look_ahead, triangle.a, triangle.b, triangle.c)
        normal = triangle_normal(triangle.a, triangle.b, triangle.c)
        distance = float(np.linalg.norm(look_ahead - closest))
        particle.is_penetrating = distance < half_height and float(np.dot(direction, normal)) < 0.0
        return particle.is_penetrating

    def correct_penetration(self, particle: Particle, surface: SurfaceQuery, dt: float) -> bool:
        """Rotate a penetrating particle away from the surface."""

        if particle.is_seed or not particle.is_penetrating:
            return False
        if particle.smoothed_normal is None:
            self.update_anchor(particle, surface)
        normal = particle.smoothed_normal
        if normal is None:
            return False
        direction = particle.direction
        axis = np.zeros(3)
        for candidate in (np.cross(direction, normal), np.cross(direction, WORLD_UP), np.cross(direction, WORLD_X)):
            if np.linalg.norm(candidate) >= AXIS_EPSILON:
                axis = normalize(candidate)
                break
        angle = clamp(
            angle_between(direction, normal) * self.params.penetration_correction_strength * dt,
            0.0,
            self.params.max_rotation_per_frame,
        )
        if not _rotate_particle(particle, axis, angle):
            return False
        _blend_preferred_direction(particle, particle.direction, 0.5)
        return True

    def resolve_surface_contact(self, particle: Particle, surface: SurfaceQuery) -> bool:
        """Push a particle that sank below the surface back onto it."""

        if particle.is_seed:
            return False
        lifted = lift_to_surface(particle.position, surface)
        push = lifted - particle.position
        if not push.any():
            return False
        particle.position = lifted
        normal = normalize(push)
        inward = float(np.dot(particle.velocity, normal))
        if inward < 0.0:
            particle.velocity = particle.velocity - normal * inward
        return True

    # -- orientation ------------------------------------------------------

    def _bias_rotation(self, particle: Particle) -> np.ndarray:
        if particle.bias_axis is None:
            return quat_identity()
        return quat_from_axis_angle(particle.bias_axis, particle.bias_angle)

    def _update_preferred_direction(self, particle: Particle) -> None:
        current = particle.direction
        biased = quat_rotate(self._bias_rotation(particle), current)
        candidate = normalize(current + biased)
        if not candidate.any():
            candidate = current
        _blend_preferred_direction(particle, candidate, self.params.preferred_direction_smoothing)

    def _target_direction(self, particle: Particle) -> np.ndarray:
        to_anchor = np.zeros(3)
        if particle.anchor is not None:
            to_anchor = normalize(particle.anchor - particle.position)
        tangent = np.zeros(3)
        if particle.preferred_direction is not None and particle.smoothed_normal is not None:
            tangent = normalize(project_onto_plane(particle.preferred_direction, particle.smoothed_normal))
        if to_anchor.any() and tangent.any():
            blended = normalize(to_anchor * 0.5 + tangent * 0.5)
            return blended if blended.any() else to_anchor
        if to_anchor.any():
            return to_anchor
        return WORLD_UP.copy()

    def _adapt_to_surface(self, particle: Particle, target: np.ndarray, dt: float) -> bool:
        current = particle.direction
        limit = self.params.max_rotation_per_frame
        angle = clamp(
            (1.0 - float(np.dot(current, target))) * self.params.surface_adaptation_strength * dt,
            -limit,
            limit,
        )
        return _rotate_particle(particle, np.cross(current, target), angle)

    def _apply_phototropism(self, particle: Particle, light: LightSource, dt: float) -> bool:
        to_light = np.asarray(light.position, dtype=np.float64) - particle.position
        distance = max(float(np.linalg.norm(to_light)), self.params.min_light_distance)
        falloff = 1.0 / (distance * distance)
        light_direction = normalize(to_light)
        if not light_direction.any():
            return False
        current = particle.direction
        limit = self.params.max_rotation_per_frame
        angle = clamp(
            float(np.dot(current, light_direction)) * self.params.phototropism_strength * dt * falloff,
            -limit,
            limit,
        )
        return _rotate_particle(particle, np.cross(current, light_direction), angle)

    def plant_orientation(
        self, particle: Particle, dt: float, light: LightSource, surface: SurfaceQuery
    ) -> bool:
        """Steer the particle: penetration, growth bias, surface adaptation, light."""

        if particle.is_seed or particle.has_apical_child:
            return False
        effective_dt = dt
        if self.check_penetration(particle, surface) and self.correct_penetration(particle, surface, dt):
            effective_dt = dt * 0.5
        self._update_preferred_direction(particle)
        self._adapt_to_surface(particle, self._target_direction(particle), effective_dt)
        self._apply_phototropism(particle, light, effective_dt)
        if self.check_penetration(particle, surface):
            self.correct_penetration(particle, surface, effective_dt)
        return True

    # -- branching --------------------------------------------------------

    def can_branch(self, plant: Plant, particle: Particle) -> bool:
        return (
            not particle.is_seed
            and particle.is_fully_grown(self.params)
            and plant.time - particle.last_branch_time >= self.config.lateral_branch_cooldown
            and len(particle.children) < self.params.max_children
        )

    def grow_lateral_branch(
        self, plant: Plant, particle: Particle, surface: Optional[SurfaceQuery] = None
    ) -> Optional[Particle]:
        if not self.can_branch(plant, particle):
            return None
        params = self.params
        direction = particle.direction
        branch_angle = float(self.rng.uniform(params.min_branch_angle, params.max_branch_angle))
        twist = float(self.rng.uniform(0.0, 2.0 * pi))
        side = quat_rotate(quat_from_axis_angle(direction, twist), any_perpendicular(direction))
        tilt = quat_from_axis_angle(side, branch_angle)
        orientation = quat_normalize(quat_multiply(tilt, particle.orientation))
        branch_direction = normalize(quat_rotate(orientation, LOCAL_FORWARD))
        child = self._spawn(
            plant,
            particle,
            position=particle.position + branch_direction * (particle.height / 2.0),
            orientation=orientation,
            dimensions=np.array(params.initial_dimensions) * params.branch_size_factor,
            material=_branch_material(particle.material, params.branch_darkening),
            is_lateral_branch=True,
            surface=surface,
        )
        particle.branch_count += 1
        particle.last_branch_time = plant.time
        logger.debug(
            "%s: particle %d branched into %d (%.2f rad)",
            plant.plant_id,
            particle.index,
            child.index,
            branch_angle,
        )
        return child

    def grow_apical_child(
        self, plant: Plant, particle: Particle, surface: Optional[SurfaceQuery] = None
    ) -> Optional[Particle]:
        if particle.has_apical_child or particle.height < self.params.max_height:
            return None
        child = self._spawn(
            plant,
            particle,
            position=particle.position + particle.direction * (particle.height / 2.0),
            orientation=particle.orientation.copy(),
            dimensions=np.array(self.params.initial_dimensions),
            material=particle.material,
            is_lateral_branch=particle.is_lateral_branch,
            surface=surface,
        )
        particle.has_apical_child = True
        logger.debug("%s: particle %d extended to %d", plant.plant_id, particle.index, child.index)
        return child

    def try_grow_branch(
        self, plant: Plant, dt: float, surface: Optional[SurfaceQuery] = None
    ) -> Optional[Particle]:
        """Maybe grow one lateral branch somewhere on the plant."""

        if self.rng.random() >= self.config.lateral_branch_probability * dt:
            return None
        particles = plant.particles
        max_weight = max((particle.weight for particle in particles if not particle.is_seed), default=0.0)
        if max_weight <= 0.0:
            return None
        count = len(particles)
        start = int(self.rng.integers(count))
        for offset in range(count):
            particle = particles[(start + offset) % count]
            if not self.can_branch(plant, particle):
                continue
            probability = (
                (particle.weight / max_weight)
                * self.params.branch_count_decay**particle.branch_count
                * self.params.branch_selection_factor
            )
            if self.rng.random() < probability:
                return self.grow_lateral_branch(plant, particle, surface)
        return None
