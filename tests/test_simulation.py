"""
Tests for the per-tick simulation driver.
"""

import numpy as np
import pytest

from vinesim.growth import GrowthModel
from vinesim.models import Garden, PointLight
from vinesim.parameters import DEFAULT_PARAMETERS, GrowthConfig
from vinesim.simulation import Environment, SnapshotRecorder, simulate_step
from vinesim.surface import ground_plane

DT = 1.0 / 60.0


class RecordingObserver:
    def __init__(self):
        self.calls = []

    def on_group_updated(self, particles, plant_id):
        self.calls.append((plant_id, len(particles)))


@pytest.fixture
def env():
    return Environment(surface=ground_plane(size=100.0), light=PointLight(np.array([3.0, 10.0, 0.0])))


@pytest.fixture
def config():
    return GrowthConfig()


@pytest.fixture
def model(config):
    return GrowthModel(config=config, rng=np.random.default_rng(7))


class TestSimulateStep:
    """Tests for simulate_step()."""

    def test_first_tick_extends_seed(self, env, model):
        garden = Garden()
        seed = garden.create_seed_particle(np.zeros(3))
        plant = garden.find_plant(seed.plant_id)

        result = simulate_step(garden, env, model, DT)

        assert len(result.new_particles) == 1
        child = result.new_particles[0]
        assert child.parent == seed.index
        assert child.plant_id == plant.plant_id
        assert result.halted_plants == []
        assert plant.time == pytest.approx(DT)

    def test_observers_are_notified_per_plant(self, env, model):
        garden = Garden()
        garden.create_seed_particle(np.zeros(3))
        garden.create_seed_particle(np.array([5.0, 0.0, 0.0]))
        observer = RecordingObserver()

        simulate_step(garden, env, model, DT, observers=[observer])

        assert sorted(plant_id for plant_id, _ in observer.calls) == sorted(garden.plants)
        assert all(count == 2 for _, count in observer.calls)

    def test_rendering_disabled_skips_observers(self, env, model, config):
        garden = Garden()
        garden.create_seed_particle(np.zeros(3))
        observer = RecordingObserver()
        config.rendering_enabled = False

        simulate_step(garden, env, model, DT, observers=[observer])

        assert observer.calls == []

    def test_non_finite_state_halts_only_that_plant(self, env, model):
        garden = Garden()
        broken = garden.find_plant(garden.create_seed_particle(np.zeros(3)).plant_id)
        healthy = garden.find_plant(garden.create_seed_particle(np.array([5.0, 0.0, 0.0])).plant_id)
        simulate_step(garden, env, model, DT)
        broken.particles[1].position[:] = np.nan

        with np.errstate(all="ignore"):
            result = simulate_step(garden, env, model, DT)

        assert result.halted_plants == [broken.plant_id]
        assert broken.halted
        assert "non-finite" in broken.error
        assert not healthy.halted
        assert healthy.time == pytest.approx(2 * DT)

        result = simulate_step(garden, env, model, DT)
        assert result.halted_plants == []
        assert broken.time == pytest.approx(DT)
        assert healthy.time == pytest.approx(3 * DT)

    def test_shape_matching_can_be_disabled(self, env, model, config):
        garden = Garden()
        garden.create_seed_particle(np.zeros(3))
        config.shape_matching_enabled = False
        child = simulate_step(garden, env, model, DT).new_particles[0]
        spawn = child.position.copy()

        for _ in range(5):
            simulate_step(garden, env, model, DT)

        np.testing.assert_allclose(child.position, spawn)
        np.testing.assert_allclose(child.velocity, np.zeros(3))

    def test_lateral_branching_can_be_disabled(self, env, model, config):
        garden = Garden()
        seed = garden.create_seed_particle(np.zeros(3))
        plant = garden.find_plant(seed.plant_id)
        config.lateral_branching_enabled = False
        config.lateral_branch_probability = 1e6
        child = simulate_step(garden, env, model, DT).new_particles[0]
        child.dimensions = np.array(DEFAULT_PARAMETERS.max_dimensions)

        for _ in range(10):
            simulate_step(garden, env, model, DT)

        assert not any(particle.is_lateral_branch for particle in plant.particles)

    def test_long_run_motion_stays_bounded(self, env, config):
        """Minutes of growth keep velocities, link lengths and heights in check."""
        model = GrowthModel(config=config, rng=np.random.default_rng(3))
        garden = Garden()
        seed = garden.create_seed_particle(np.zeros(3))
        plant = garden.find_plant(seed.plant_id)
        config.growth_rate = 2.0
        config.lateral_branching_enabled = False

        for tick in range(3000):
            result = simulate_step(garden, env, model, DT)
            assert result.halted_plants == []
            if tick % 50:
                continue
            for particle in plant.particles[1:]:
                link = np.linalg.norm(particle.position - plant.get(particle.parent).position)
                assert link < 1.0
                assert np.linalg.norm(particle.velocity) < 5.0
                assert particle.position[1] >= -1e-9

        assert len(plant) > 10
        np.testing.assert_allclose(seed.position, np.zeros(3))

    def test_steering_produces_angular_velocity(self, env, model):
        """Orientation changes made during a tick show up as angular velocity."""
        garden = Garden()
        seed = garden.create_seed_particle(np.zeros(3))
        plant = garden.find_plant(seed.plant_id)

        peak = 0.0
        for _ in range(60):
            simulate_step(garden, env, model, DT)
            peak = max(peak, max(np.linalg.norm(particle.angular_velocity) for particle in plant.particles))

        assert peak > 0.0
        np.testing.assert_allclose(seed.angular_velocity, np.zeros(3))

    def test_long_run_stays_consistent(self, env, model, config):
        """A few seconds of fast growth keep the plant finite and well formed."""
        garden = Garden()
        seed = garden.create_seed_particle(np.zeros(3))
        plant = garden.find_plant(seed.plant_id)
        config.growth_rate = 4.0
        params = model.params

        for _ in range(300):
            result = simulate_step(garden, env, model, DT)
            assert result.halted_plants == []

        assert len(plant) > 3
        caps = np.array(params.max_dimensions)
        for particle in plant.particles:
            assert np.all(np.isfinite(particle.position))
            assert np.linalg.norm(particle.orientation) == pytest.approx(1.0)
            assert np.all(particle.dimensions <= caps)
            assert len(particle.children) <= params.max_children
            if particle.parent is not None:
                assert particle.depth == plant.get(particle.parent).depth + 1
        np.testing.assert_allclose(seed.position, np.zeros(3))


class TestSnapshotRecorder:
    """Tests for SnapshotRecorder change tracking."""

    def test_added_then_updated(self, env, model):
        garden = Garden()
        seed = garden.create_seed_particle(np.zeros(3))
        recorder = SnapshotRecorder()

        simulate_step(garden, env, model, DT, observers=[recorder])
        changes = recorder.changes[seed.plant_id]
        assert changes.added == [0, 1]
        assert changes.removed == []

        simulate_step(garden, env, model, DT, observers=[recorder])
        changes = recorder.changes[seed.plant_id]
        assert changes.added == []
        assert 1 in changes.updated
        assert 0 not in changes.updated

    def test_forget(self, env, model):
        garden = Garden()
        seed = garden.create_seed_particle(np.zeros(3))
        recorder = SnapshotRecorder()
        simulate_step(garden, env, model, DT, observers=[recorder])
        recorder.forget(seed.plant_id)
        assert seed.plant_id not in recorder.snapshots
        assert seed.plant_id not in recorder.changes
