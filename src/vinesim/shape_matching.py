"""Oriented-particle shape matching over parent/child particle groups.

Every particle owns one group made of itself, its parent and its direct
children. For each group the optimal rotation taking the rest configuration
onto the predicted one is extracted by polar decomposition of the group
moment matrix; particles are then pulled towards the weighted average of
their targets in every group they belong to, and their orientations towards
the rest frame carried by their own group rotation. Velocities are damped
before each prediction.
"""

from __future__ import annotations

import numpy as np

from .errors import NonFiniteStateError
from .mathutils import (
    clamp,
    polar_decomposition,
    quat_conjugate,
    quat_from_matrix,
    quat_multiply,
    quat_nlerp,
    quat_normalize,
    quat_to_matrix,
)
from .models import Particle, Plant
from .parameters import DEFAULT_PARAMETERS, GrowthParameters

ANGULAR_DEAD_ZONE = 1e-6


def damp_velocity(particle: Particle, dt: float, damping: float) -> None:
    factor = max(0.0, 1.0 - damping * dt)
    particle.velocity = particle.velocity * factor
    particle.angular_velocity = particle.angular_velocity * factor


def predict(particle: Particle, dt: float, gravity: np.ndarray) -> None:
    if particle.is_seed:
        particle.predicted_position = particle.position.copy()
        particle.predicted_orientation = particle.orientation.copy()
        return
    particle.predicted_position = particle.position + particle.velocity * dt + 0.5 * gravity * dt * dt
    speed = float(np.linalg.norm(particle.angular_velocity))
    if speed < ANGULAR_DEAD_ZONE:
        particle.predicted_orientation = particle.orientation.copy()
        return
    half_angle = speed * dt / 2.0
    axis = particle.angular_velocity / speed
    spin = np.concatenate(([np.cos(half_angle)], axis * np.sin(half_angle)))
    particle.predicted_orientation = quat_normalize(quat_multiply(spin, particle.orientation))


def update_particle_group_center_of_mass(plant: Plant, particle: Particle) -> None:
    group = plant.group_of(particle)
    total_mass = sum(member.mass for member in group)
    if not total_mass > 0.0:
        raise NonFiniteStateError(plant.plant_id, particle.index, "group mass")
    particle.group_center = sum(member.mass * member.predicted_position for member in group) / total_mass
    particle.group_rest_center = sum(member.mass * member.rest_position for member in group) / total_mass


def update_least_squares_optimal_matrix(plant: Plant, particle: Particle) -> None:
    group = plant.group_of(particle)
    total_mass = sum(member.mass for member in group)
    moment = np.zeros((3, 3))
    for member in group:
        moment += member.moment_for(quat_to_matrix(member.predicted_orientation))
        moment += member.mass * np.outer(member.predicted_position, member.rest_position)
    moment -= total_mass * np.outer(particle.group_center, particle.group_rest_center)
    particle.group_moment = moment
    particle.group_rotation = polar_decomposition(moment)


def target_in_group(owner: Particle, member: Particle) -> np.ndarray:
    """Where ``owner``'s group wants ``member`` to be."""

    return owner.group_rotation @ (member.rest_position - owner.group_rest_center) + owner.group_center


def update_target_position(particle: Particle) -> None:
    particle.target_position = target_in_group(particle, particle)


def update_goal_position(plant: Plant, particle: Particle) -> None:
    if particle.is_seed:
        particle.goal_position = particle.position.copy()
        return
    goal = np.zeros(3)
    total_weight = 0.0
    # the groups containing a particle are exactly those owned by its own group members
    for owner in plant.group_of(particle):
        goal += owner.weight * target_in_group(owner, particle)
        total_weight += owner.weight
    if not total_weight > 0.0:
        raise NonFiniteStateError(plant.plant_id, particle.index, "group weight")
    particle.goal_position = goal / total_weight


def update_goal_orientation(particle: Particle) -> None:
    """Orientation the particle's own group rotation gives its rest frame."""

    if particle.is_seed:
        particle.goal_orientation = particle.orientation.copy()
        return
    particle.goal_orientation = quat_normalize(
        quat_multiply(quat_from_matrix(particle.group_rotation), particle.rest_orientation)
    )


def apply_stiffness(particle: Particle, stiffness: float) -> None:
    if particle.is_seed:
        return
    particle.goal_position = particle.predicted_position + (
        particle.goal_position - particle.predicted_position
    ) * stiffness
    particle.predicted_orientation = quat_nlerp(
        particle.predicted_orientation, particle.goal_orientation, stiffness
    )


def integration_scheme(particle: Particle, dt: float) -> None:
    """Commit goal position and predicted orientation, deriving velocities."""

    particle.previous_position = particle.position.copy()
    particle.previous_orientation = particle.orientation.copy()
    if particle.is_seed or dt <= 0.0:
        particle.velocity = np.zeros(3)
        particle.angular_velocity = np.zeros(3)
        return
    particle.velocity = (particle.goal_position - particle.position) / dt
    particle.position = particle.goal_position.copy()

    relative = quat_multiply(particle.predicted_orientation, quat_conjugate(particle.orientation))
    if relative[0] < 0.0:
        relative = -relative
    angle = 2.0 * float(np.arccos(clamp(float(relative[0]), -1.0, 1.0)))
    if angle < ANGULAR_DEAD_ZONE:
        particle.angular_velocity = np.zeros(3)
    else:
        axis = relative[1:] / np.sin(angle / 2.0)
        particle.angular_velocity = axis * angle / dt
    particle.set_orientation(particle.predicted_orientation)


def integrate_plant(plant: Plant, dt: float, params: GrowthParameters = DEFAULT_PARAMETERS) -> None:
    """Run one shape-matching step as whole-plant passes."""

    particles = plant.particles
    gravity = np.array(params.gravity, dtype=np.float64)
    for particle in particles:
        damp_velocity(particle, dt, params.damping)
        predict(particle, dt, gravity)
    for particle in particles:
        update_particle_group_center_of_mass(plant, particle)
    for particle in particles:
        update_least_squares_optimal_matrix(plant, particle)
    for particle in particles:
        update_target_position(particle)
    for particle in particles:
        update_goal_position(plant, particle)
    for particle in particles:
        update_goal_orientation(particle)
    for particle in particles:
        apply_stiffness(particle, params.stiffness)
    for particle in particles:
        integration_scheme(particle, dt)
