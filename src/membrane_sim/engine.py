"""
Per-frame particle stepping kernel.

Every active particle gets one biased random-walk step:

1. random acceleration impulse scaled by temperature and cell size
2. exponential velocity damping (damping ** delta)
3. position integration
4. stochastic permeation when the step crosses the membrane, with
   specular reflection on rejection.  The acceptance rate is nudged by
   the running inside fraction so occupancy relaxes toward its target
5. soft radial containment between 0.15 R and 2.6 R
6. crossing detection against the stored side flag

All random numbers come from a (active_count, 4) block of uniforms so the
kernel stays deterministic for a given block.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from numba import njit

from .params import (
    BASE_ACCEL,
    BASE_MOVE_SCALE,
    DAMPING,
    EPS,
    FEEDBACK_CAP,
    FEEDBACK_GAIN,
    MAX_R_FRACTION,
    MIN_R_FRACTION,
    P_MAX,
    crossing_probability,
    inside_target_fraction,
    permeation_rates,
    radius_factor,
    speed_factor,
)
from .pool import ParticlePool

###############################################################################
# Constants
###############################################################################

DRAWS_PER_PARTICLE = 4
REFLECT_NUDGE = 0.02  # rejected particles land at R * (1 -/+ nudge)

CROSS_NONE = 0
CROSS_ENTER = 1
CROSS_EXIT = -1


@dataclass(frozen=True)
class StepCoefficients:
    """Per-step constants derived from the parameters and ``delta``."""

    radius: float
    accel: float
    move_scale: float
    damping: float
    k_enter: float
    k_exit: float
    p_enter: float
    p_exit: float
    target_fraction: float
    min_r: float
    max_r: float


def step_coefficients(radius: float, gradient: float, temperature_c: float, delta: float) -> StepCoefficients:
    speed = speed_factor(temperature_c)
    size = radius_factor(radius)
    k_enter, k_exit = permeation_rates(gradient, temperature_c)
    return StepCoefficients(
        radius=radius,
        accel=BASE_ACCEL * speed * size,
        move_scale=BASE_MOVE_SCALE * speed * size,
        damping=DAMPING ** delta,
        k_enter=k_enter,
        k_exit=k_exit,
        p_enter=crossing_probability(k_enter, delta),
        p_exit=crossing_probability(k_exit, delta),
        target_fraction=inside_target_fraction(gradient),
        min_r=MIN_R_FRACTION * radius,
        max_r=MAX_R_FRACTION * radius,
    )


###############################################################################
# Kernel helpers
###############################################################################


@njit(cache=True)
def _norm3(x: float, y: float, z: float) -> float:
    return math.sqrt(x * x + y * y + z * z)


@njit(cache=True)
def _direction(pos):
    """Unit vector along ``pos``; +x when the point sits on the origin."""
    dist = _norm3(pos[0], pos[1], pos[2])
    if dist < EPS:
        return 1.0, 0.0, 0.0
    return pos[0] / dist, pos[1] / dist, pos[2] / dist


@njit(cache=True)
def _reflect(pos, vel, radius, was_outside):
    """
    Send a rejected particle back to the side it came from.

    The position is moved just across the membrane along its current
    direction and the radial velocity component is inverted.
    """
    nx, ny, nz = _direction(pos)

    if was_outside:
        r_new = radius * (1.0 + REFLECT_NUDGE)
    else:
        r_new = radius * (1.0 - REFLECT_NUDGE)
    pos[0] = nx * r_new
    pos[1] = ny * r_new
    pos[2] = nz * r_new

    v_rad = vel[0] * nx + vel[1] * ny + vel[2] * nz
    vel[0] -= 2.0 * v_rad * nx
    vel[1] -= 2.0 * v_rad * ny
    vel[2] -= 2.0 * v_rad * nz


@njit(cache=True)
def _contain(pos, min_r, max_r):
    dist = _norm3(pos[0], pos[1], pos[2])
    if dist >= min_r and dist <= max_r:
        return
    nx, ny, nz = _direction(pos)
    r_new = min_r if dist < min_r else max_r
    pos[0] = nx * r_new
    pos[1] = ny * r_new
    pos[2] = nz * r_new


@njit(cache=True)
def _acceptance(k, delta, bias):
    bias = min(max(bias, -FEEDBACK_CAP), FEEDBACK_CAP)
    return min(1.0 - math.exp(-k * math.exp(bias) * delta), P_MAX)


@njit(cache=True)
def _detect_crossing(i, positions, outside, radius) -> int:
    """Compare the final side with the stored one and update the flag."""
    dist = _norm3(positions[i, 0], positions[i, 1], positions[i, 2])
    is_outside = dist >= radius
    if is_outside == outside[i]:
        return CROSS_NONE
    outside[i] = is_outside
    if is_outside:
        return CROSS_EXIT
    return CROSS_ENTER


###############################################################################
# Main kernel
###############################################################################


@njit(cache=True)
def advance_particles(
    positions: np.ndarray,
    velocities: np.ndarray,
    outside: np.ndarray,
    n_active: int,
    draws: np.ndarray,
    delta: float,
    radius: float,
    accel: float,
    move_scale: float,
    damping: float,
    k_enter: float,
    k_exit: float,
    target_fraction: float,
    gain: float,
    min_r: float,
    max_r: float,
    crossings: np.ndarray,
) -> int:
    """
    Advance the first ``n_active`` particles by ``delta``.

    A crossing attempt is accepted with probability 1 - exp(-k e^b dt), where
    b = +/- gain * (target_fraction - inside_fraction) uses the inside count
    as updated by the crossings already accepted in this step.  ``gain = 0``
    gives the plain rate constants.

    ``crossings[i]`` receives +1 (enter), -1 (exit) or 0.  Returns the
    number of rejected (reflected) crossing attempts.
    """
    n_inside = 0
    for i in range(n_active):
        if not outside[i]:
            n_inside += 1

    rejected = 0
    for i in range(n_active):
        pos = positions[i]
        vel = velocities[i]
        dist0 = _norm3(pos[0], pos[1], pos[2])

        for k in range(3):
            vel[k] += (2.0 * draws[i, k] - 1.0) * accel * delta
            vel[k] *= damping
            pos[k] += vel[k] * delta * move_scale

        dist1 = _norm3(pos[0], pos[1], pos[2])

        crossed_out = dist0 < radius and dist1 >= radius
        crossed_in = dist0 >= radius and dist1 < radius
        if crossed_out or crossed_in:
            bias = gain * (target_fraction - n_inside / n_active)
            if crossed_in:
                p = _acceptance(k_enter, delta, bias)
            else:
                p = _acceptance(k_exit, delta, -bias)
            if draws[i, 3] >= p:
                _reflect(pos, vel, radius, crossed_in)
                rejected += 1

        _contain(pos, min_r, max_r)
        code = _detect_crossing(i, positions, outside, radius)
        crossings[i] = code
        n_inside += code

    return rejected


class StepEngine:
    """Applies one kernel step to a pool using an injected random source."""

    def __init__(self, pool: ParticlePool, rng, feedback_gain: float = FEEDBACK_GAIN) -> None:
        self.pool = pool
        self.rng = rng
        self.feedback_gain = feedback_gain
        self.crossings = np.zeros(pool.capacity, dtype=np.int8)
        self.rejected_total = 0

    def step(self, delta: float, radius: float, gradient: float, temperature_c: float) -> np.ndarray:
        """
        Advance every active particle once and return the crossing codes
        of the active slots.  A non-positive ``delta`` leaves the pool untouched.
        """
        n_active = self.pool.active_count
        self.crossings[:] = CROSS_NONE
        if delta <= 0.0 or n_active == 0:
            return self.crossings[:n_active]

        c = step_coefficients(radius, gradient, temperature_c, delta)
        draws = np.asarray(self.rng.random((n_active, DRAWS_PER_PARTICLE)), dtype=np.float64)
        self.rejected_total += advance_particles(
            self.pool.positions,
            self.pool.velocities,
            self.pool.outside,
            n_active,
            draws,
            float(delta),
            c.radius,
            c.accel,
            c.move_scale,
            c.damping,
            c.k_enter,
            c.k_exit,
            c.target_fraction,
            float(self.feedback_gain),
            c.min_r,
            c.max_r,
            self.crossings,
        )
        return self.crossings[:n_active]


__all__ = [
    "CROSS_ENTER",
    "CROSS_EXIT",
    "CROSS_NONE",
    "StepCoefficients",
    "StepEngine",
    "advance_particles",
    "step_coefficients",
]
