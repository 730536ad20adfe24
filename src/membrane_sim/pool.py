from __future__ import annotations

import math

import numpy as np
from numba import njit

from .params import (
    EPS,
    MAX_PARTICLES,
    MAX_R_FRACTION,
    MIN_ACTIVE_PARTICLES,
    MIN_R_FRACTION,
    active_count,
    inside_target_count,
)

###############################################################################
# Constants
###############################################################################

INSIDE_SHELL = (MIN_R_FRACTION, 0.95)
OUTSIDE_SHELL = (1.1, MAX_R_FRACTION)
INITIAL_JITTER = 0.02
PARK_DISTANCE = 1.0e3


@njit(cache=True)
def _place_on_shells(positions, velocities, outside, draws, n_active, n_inside, radius):
    """
    Place the first ``n_active`` particles from a (n_active, 6) block of uniforms.

    Columns 0-1 pick an isotropic direction, column 2 the radius inside the
    shell, columns 3-5 the initial velocity.
    """
    for i in range(n_active):
        z = 2.0 * draws[i, 0] - 1.0
        phi = 2.0 * math.pi * draws[i, 1]
        s = math.sqrt(max(0.0, 1.0 - z * z))

        if i < n_inside:
            r_lo = INSIDE_SHELL[0] * radius
            r_hi = INSIDE_SHELL[1] * radius
            outside[i] = False
        else:
            r_lo = OUTSIDE_SHELL[0] * radius
            r_hi = OUTSIDE_SHELL[1] * radius
            outside[i] = True
        r = r_lo + (r_hi - r_lo) * draws[i, 2]

        positions[i, 0] = r * s * math.cos(phi)
        positions[i, 1] = r * s * math.sin(phi)
        positions[i, 2] = r * z

        for k in range(3):
            velocities[i, k] = (2.0 * draws[i, 3 + k] - 1.0) * INITIAL_JITTER


class ParticlePool:
    """
    Fixed-capacity particle arena.

    Slots are addressed by index; ``index < active_count`` is active.
    Inactive slots are parked far from the scene instead of being removed.
    """

    def __init__(self, capacity: int = MAX_PARTICLES, min_active: int = MIN_ACTIVE_PARTICLES) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if not 0 <= min_active <= capacity:
            raise ValueError(f"min_active must be within [0, {capacity}], got {min_active}")
        self.capacity = capacity
        self.min_active = min_active
        self.positions = np.zeros((capacity, 3), dtype=np.float64)
        self.velocities = np.zeros((capacity, 3), dtype=np.float64)
        self.outside = np.ones(capacity, dtype=np.bool_)
        self.active_count = 0
        self.park(0)

    def park(self, start: int) -> None:
        """Park every slot from ``start`` on: far away, at rest, outside."""
        self.positions[start:] = 0.0
        self.positions[start:, 0] = PARK_DISTANCE
        self.velocities[start:] = 0.0
        self.outside[start:] = True

    def distances(self) -> np.ndarray:
        pos = self.positions[: self.active_count]
        return np.sqrt(np.sum(pos * pos, axis=1))

    def occupancy(self) -> tuple[int, int]:
        """(inside, outside) counts over the active population."""
        n_outside = int(np.count_nonzero(self.outside[: self.active_count]))
        return self.active_count - n_outside, n_outside

    def assert_consistent(self, radius: float) -> None:
        """Check that every active side flag matches its particle's position."""
        actual = self.distances() >= radius
        bad = np.flatnonzero(actual != self.outside[: self.active_count])
        assert bad.size == 0, (
            f"side flag out of sync for {bad.size} particle(s), first index {bad[0] if bad.size else -1}"
        )


def reseed(pool: ParticlePool, gradient: float, radius: float, rng) -> tuple[int, int]:
    """
    Redistribute the pool for a new gradient or membrane radius.

    Returns (active_count, inside_count).  The counts depend on ``gradient``
    alone; only the placement draws come from ``rng``.
    """
    radius = max(radius, EPS)
    n_active = active_count(gradient, pool.capacity, pool.min_active)
    n_inside = inside_target_count(gradient, pool.capacity, pool.min_active)

    draws = np.asarray(rng.random((n_active, 6)), dtype=np.float64)
    _place_on_shells(pool.positions, pool.velocities, pool.outside, draws, n_active, n_inside, radius)
    pool.park(n_active)
    pool.active_count = n_active
    return n_active, n_inside


__all__ = [
    "PARK_DISTANCE",
    "ParticlePool",
    "reseed",
]
