"""
Unit tests for the particle stepping kernel.
"""

import math

import numpy as np
import pytest

from membrane_sim.engine import (
    CROSS_ENTER,
    CROSS_EXIT,
    CROSS_NONE,
    REFLECT_NUDGE,
    StepEngine,
    advance_particles,
    step_coefficients,
)
from membrane_sim.params import DAMPING, inside_target_fraction
from membrane_sim.pool import ParticlePool, reseed


class FixedRandom:
    """Random source returning one constant for every draw."""

    def __init__(self, value):
        self.value = value
        self.calls = 0

    def random(self, size):
        self.calls += 1
        return np.full(size, self.value, dtype=np.float64)


class ForbiddenRandom:
    def random(self, size):
        raise AssertionError("random source must not be used")


def _rate_for(p, delta):
    return -math.log1p(-p) / delta


def _single(pos, vel, outside, perm_draw, *, delta=0.2, p=0.5, radius=1.0):
    """Run the kernel on one particle with no random acceleration or feedback."""
    k = _rate_for(p, delta)
    positions = np.array([pos], dtype=np.float64)
    velocities = np.array([vel], dtype=np.float64)
    flags = np.array([outside], dtype=np.bool_)
    draws = np.array([[0.5, 0.5, 0.5, perm_draw]], dtype=np.float64)
    crossings = np.zeros(1, dtype=np.int8)
    rejected = advance_particles(
        positions, velocities, flags, 1, draws, delta, radius,
        0.0, 1.0, 1.0, k, k, 0.5, 0.0, 0.15 * radius, 2.6 * radius, crossings,
    )
    return positions[0], velocities[0], bool(flags[0]), int(crossings[0]), rejected


def test_rejected_exit_reflects_back_inside():
    pos, vel, outside, crossing, rejected = _single([0.9, 0.0, 0.0], [1.0, 0.0, 0.0], False, 0.9)
    assert rejected == 1
    assert crossing == CROSS_NONE
    assert outside is False
    assert pos[0] == pytest.approx(1.0 - REFLECT_NUDGE)
    assert np.linalg.norm(pos) < 1.0
    assert vel[0] == pytest.approx(-1.0)


def test_rejected_entry_reflects_back_outside():
    pos, vel, outside, crossing, rejected = _single([1.1, 0.0, 0.0], [-1.0, 0.0, 0.0], True, 0.9)
    assert rejected == 1
    assert crossing == CROSS_NONE
    assert outside is True
    assert np.linalg.norm(pos) == pytest.approx(1.0 + REFLECT_NUDGE)
    assert vel[0] == pytest.approx(1.0)


def test_reflection_keeps_tangential_velocity():
    pos, vel, outside, crossing, _ = _single([0.9, 0.0, 0.0], [1.0, 0.3, 0.0], False, 0.9)
    assert crossing == CROSS_NONE
    assert np.linalg.norm(pos) < 1.0
    normal = pos / np.linalg.norm(pos)
    tangent_before = np.array([1.0, 0.3, 0.0]) - np.dot([1.0, 0.3, 0.0], normal) * normal
    tangent_after = vel - np.dot(vel, normal) * normal
    assert np.allclose(tangent_before, tangent_after)
    assert np.dot(vel, normal) < 0.0


def test_accepted_exit_emits_exit():
    pos, _, outside, crossing, rejected = _single([0.9, 0.0, 0.0], [1.0, 0.0, 0.0], False, 0.1)
    assert rejected == 0
    assert crossing == CROSS_EXIT
    assert outside is True
    assert pos[0] == pytest.approx(1.1)


def test_accepted_entry_emits_enter():
    pos, _, outside, crossing, rejected = _single([1.1, 0.0, 0.0], [-1.0, 0.0, 0.0], True, 0.1)
    assert rejected == 0
    assert crossing == CROSS_ENTER
    assert outside is False
    assert pos[0] == pytest.approx(0.9)


def test_radial_containment():
    pos, _, outside, crossing, _ = _single([0.5, 0.0, 0.0], [-2.0, 0.0, 0.0], False, 0.5)
    assert np.linalg.norm(pos) == pytest.approx(0.15)
    assert crossing == CROSS_NONE and outside is False

    pos, _, outside, crossing, _ = _single([2.5, 0.0, 0.0], [1.0, 0.0, 0.0], True, 0.5, delta=0.5)
    assert np.linalg.norm(pos) == pytest.approx(2.6)
    assert crossing == CROSS_NONE and outside is True


def test_damping_is_delta_independent():
    two_halves = step_coefficients(1.0, 0.5, 25.0, 0.05).damping ** 2
    one_step = step_coefficients(1.0, 0.5, 25.0, 0.1).damping
    assert one_step == pytest.approx(two_halves)
    assert one_step == pytest.approx(DAMPING ** 0.1)


def test_larger_cells_move_slower():
    small = step_coefficients(0.5, 0.5, 25.0, 0.1)
    large = step_coefficients(2.0, 0.5, 25.0, 0.1)
    assert small.accel > large.accel
    assert small.move_scale > large.move_scale


def test_zero_delta_does_not_touch_pool_or_rng():
    pool = ParticlePool(capacity=50, min_active=50)
    reseed(pool, 0.5, 1.0, np.random.default_rng(0))
    before = (pool.positions.copy(), pool.velocities.copy(), pool.outside.copy())
    engine = StepEngine(pool, ForbiddenRandom())
    crossings = engine.step(0.0, 1.0, 0.5, 25.0)
    assert not crossings.any()
    assert np.array_equal(pool.positions, before[0])
    assert np.array_equal(pool.velocities, before[1])
    assert np.array_equal(pool.outside, before[2])


def test_side_flags_track_positions_after_steps():
    pool = ParticlePool(capacity=300, min_active=100)
    rng = np.random.default_rng(5)
    reseed(pool, 0.7, 1.0, rng)
    engine = StepEngine(pool, rng)
    for delta in [1.0 / 60.0] * 120 + [0.5, 1.0, 2.0]:
        engine.step(delta, 1.0, 0.7, 40.0)
        dist = pool.distances()
        assert np.array_equal(pool.outside[: pool.active_count], dist >= 1.0)
        assert np.all(dist >= 0.15 - 1e-9)
        assert np.all(dist <= 2.6 + 1e-9)


def test_fixed_draws_are_reproducible():
    results = []
    for _ in range(2):
        pool = ParticlePool(capacity=40, min_active=40)
        reseed(pool, 0.5, 1.0, np.random.default_rng(9))
        engine = StepEngine(pool, FixedRandom(0.8))
        for _ in range(10):
            engine.step(0.1, 1.0, 0.5, 25.0)
        results.append(pool.positions.copy())
    assert np.array_equal(results[0], results[1])

def test_step_landing_on_origin_reflects_along_fallback_normal():
    pos, vel, outside, crossing, rejected = _single([1.2, 0.0, 0.0], [-6.0, 0.0, 0.0], True, 0.9)
    assert rejected == 1
    assert crossing == CROSS_NONE and outside is True
    assert np.allclose(pos, [1.0 + REFLECT_NUDGE, 0.0, 0.0])
    assert vel[0] == pytest.approx(6.0)


def test_containment_lifts_origin_to_inner_bound():
    pos, _, outside, crossing, _ = _single([0.1, 0.0, 0.0], [-0.5, 0.0, 0.0], False, 0.5)
    assert np.allclose(pos, [0.15, 0.0, 0.0])
    assert crossing == CROSS_NONE and outside is False


def test_running_occupancy_throttles_exits():
    n, delta = 10, 0.2
    k = _rate_for(0.5, delta)

    def run(gain):
        positions = np.tile([0.9, 0.0, 0.0], (n, 1))
        velocities = np.tile([1.0, 0.0, 0.0], (n, 1))
        flags = np.zeros(n, dtype=np.bool_)
        draws = np.tile([0.5, 0.5, 0.5, 0.3], (n, 1))
        crossings = np.zeros(n, dtype=np.int8)
        rejected = advance_particles(
            positions, velocities, flags, n, draws, delta, 1.0,
            0.0, 1.0, 1.0, k, k, 1.0, gain, 0.15, 2.6, crossings,
        )
        return int(np.count_nonzero(crossings == CROSS_EXIT)), rejected

    assert run(0.0) == (n, 0)
    # the first exit drops the inside fraction to 0.9 and the rest are held back
    assert run(80.0) == (1, n - 1)


def _flux(seed_gradient, gradient, steps, delta=1.0 / 60.0):
    pool = ParticlePool()
    rng = np.random.default_rng(11)
    reseed(pool, seed_gradient, 1.0, rng)
    engine = StepEngine(pool, rng)
    start = pool.occupancy()[0] / pool.active_count
    enters = exits = 0
    for _ in range(steps):
        crossings = engine.step(delta, 1.0, gradient, 25.0)
        enters += int(np.count_nonzero(crossings == CROSS_ENTER))
        exits += int(np.count_nonzero(crossings == CROSS_EXIT))
    end = pool.occupancy()[0] / pool.active_count
    return enters, exits, start, end


def test_flux_runs_inward_when_below_high_gradient_target():
    enters, exits, start, end = _flux(0.2, 0.8, 300)
    target = inside_target_fraction(0.8)
    assert enters > exits
    assert end > start
    assert abs(end - target) < abs(start - target)


def test_flux_runs_outward_when_above_low_gradient_target():
    enters, exits, start, end = _flux(0.8, 0.2, 300)
    target = inside_target_fraction(0.2)
    assert exits > enters
    assert end < start
    assert abs(end - target) < abs(start - target)


@pytest.mark.parametrize("gradient", [0.6, 0.9])
def test_reseeded_target_holds_with_frame_steps(gradient):
    _, _, start, end = _flux(gradient, gradient, 600)
    target = inside_target_fraction(gradient)
    assert start == pytest.approx(target, abs=0.01)
    assert abs(end - target) < 0.05


@pytest.mark.parametrize("gradient", [0.6, 0.9])
def test_reseeded_target_holds_with_one_second_steps(gradient):
    enters, exits, start, end = _flux(gradient, gradient, 10, delta=1.0)
    target = inside_target_fraction(gradient)
    assert enters > 0 and exits > 0
    assert abs(end - target) < 0.1
