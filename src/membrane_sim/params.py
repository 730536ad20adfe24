"""
Parameter handling for the membrane diffusion model.

Slider values arrive as (radius in µm, concentration gradient, temperature in
°C).  They are clamped here and converted into the dimensionless factors the
particle kernel works with.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .utils import check_keys

###############################################################################
# Constants
###############################################################################

EPS = 1e-6

# Pool sizing: more gradient => more particles
MAX_PARTICLES = 1400
MIN_ACTIVE_PARTICLES = 450

# µm -> scene units (radius 12 µm maps to 1.0)
UM_PER_SCENE_UNIT = 12.0
SCENE_RADIUS_RANGE = (0.35, 2.2)
REFERENCE_RADIUS = 1.0

# Temperature normalisation used by the particle model only
TEMP_NORM_RANGE_C = (0.0, 60.0)
SPEED_MIN = 0.6
SPEED_SPAN = 1.8

# Random walk
BASE_ACCEL = 1.4
BASE_MOVE_SCALE = 1.25
DAMPING = 0.78

# Soft containment, fractions of membrane radius
MIN_R_FRACTION = 0.15
MAX_R_FRACTION = 2.6

# Outside shell volume over inside shell volume
VOLUME_RATIO = (MAX_R_FRACTION ** 3 - 1.0) / (1.0 - MIN_R_FRACTION ** 3)

# Membrane permeability
K_BASE = 2.2
P_MAX = 0.995  # a crossing attempt can always be rejected

# Occupancy feedback: log-rate bias per unit of inside-fraction error
FEEDBACK_GAIN = 80.0
FEEDBACK_CAP = 8.0

# Inside occupancy target
INSIDE_FRACTION_BASE = 0.2
INSIDE_FRACTION_SPAN = 0.6
INSIDE_FRACTION_RANGE = (0.1, 0.9)


###############################################################################
# Parameter state
###############################################################################


@dataclass(frozen=True)
class ParameterRanges:
    """Clamp limits for one layer (core model or slider UI)."""

    radius_um: Tuple[float, float]
    gradient: Tuple[float, float]
    temperature_c: Tuple[float, float]


CORE_RANGES = ParameterRanges(
    radius_um=(1.0, 200.0), gradient=(0.0, 1.0), temperature_c=(-10.0, 80.0)
)
UI_RANGES = ParameterRanges(
    radius_um=(4.0, 30.0), gradient=(0.0, 1.0), temperature_c=(0.0, 60.0)
)


@dataclass(frozen=True)
class SimulationParameters:
    radius_um: float = 12.0
    gradient: float = 0.6
    temperature_c: float = 25.0


def clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


def _finite_or(value, default: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default


def configure(
    params: SimulationParameters | dict | None = None,
    ranges: ParameterRanges = CORE_RANGES,
) -> SimulationParameters:
    """
    Normalise parameters into the valid range of the given layer.

    Out-of-range values are clamped and non-numeric or non-finite values
    fall back to the defaults.  Only keys that are not parameter names
    raise ``ValueError``.
    """
    if params is None:
        params = SimulationParameters()
    elif isinstance(params, dict):
        check_keys(params, SimulationParameters)
        params = SimulationParameters(**params)
    defaults = SimulationParameters()

    return SimulationParameters(
        radius_um=clamp(_finite_or(params.radius_um, defaults.radius_um), *ranges.radius_um),
        gradient=clamp(_finite_or(params.gradient, defaults.gradient), *ranges.gradient),
        temperature_c=clamp(
            _finite_or(params.temperature_c, defaults.temperature_c), *ranges.temperature_c
        ),
    )


###############################################################################
# Derived quantities
###############################################################################


def scene_radius(radius_um: float) -> float:
    """Membrane radius in scene units (kept visually stable, not to scale)."""
    return clamp(radius_um / UM_PER_SCENE_UNIT, *SCENE_RADIUS_RANGE)


def speed_factor(temperature_c: float) -> float:
    """Random-walk speed multiplier in [0.6, 2.4], linear in temperature."""
    lo, hi = TEMP_NORM_RANGE_C
    temp_norm = clamp((temperature_c - lo) / (hi - lo), 0.0, 1.0)
    return SPEED_MIN + temp_norm * SPEED_SPAN


def radius_factor(radius: float) -> float:
    """Larger cells move particles relatively slower."""
    return REFERENCE_RADIUS / max(radius, EPS)


def permeation_rates(gradient: float, temperature_c: float) -> Tuple[float, float]:
    """
    Rate constants (k_enter, k_exit) for membrane crossings.

    The ratio k_enter / k_exit equals the target inside:outside odds times
    the outside:inside shell volume ratio, so a well-mixed population settles
    near ``inside_target_fraction(gradient)``.  Both constants stay positive
    and their sum is ``2 * K_BASE * speed``.
    """
    g = clamp(gradient, 0.0, 1.0)
    k_base = K_BASE * speed_factor(temperature_c)
    target = inside_target_fraction(g)
    odds = target / (1.0 - target) * VOLUME_RATIO
    k_enter = 2.0 * k_base * odds / (1.0 + odds)
    k_exit = 2.0 * k_base / (1.0 + odds)
    return k_enter, k_exit


def occupancy_bias(inside_fraction: float, target_fraction: float, gain: float = FEEDBACK_GAIN) -> float:
    """
    Log-rate correction applied to entries (and negated for exits).

    Positive when the cell holds fewer particles than its target.  The
    result is capped so neither direction is ever switched off.
    """
    return clamp(gain * (target_fraction - inside_fraction), -FEEDBACK_CAP, FEEDBACK_CAP)


def crossing_probability(k: float, delta: float, bias: float = 0.0) -> float:
    """Probability of at least one crossing within ``delta``: 1 - exp(-k e^bias dt)."""
    if delta <= 0.0:
        return 0.0
    return min(-math.expm1(-k * math.exp(bias) * delta), P_MAX)


def active_count(gradient: float, capacity: int = MAX_PARTICLES, minimum: int = MIN_ACTIVE_PARTICLES) -> int:
    g = clamp(gradient, 0.0, 1.0)
    return int(math.floor(minimum + (capacity - minimum) * g))


def inside_target_fraction(gradient: float) -> float:
    g = clamp(gradient, 0.0, 1.0)
    return clamp(INSIDE_FRACTION_BASE + INSIDE_FRACTION_SPAN * g, *INSIDE_FRACTION_RANGE)


def inside_target_count(gradient: float, capacity: int = MAX_PARTICLES, minimum: int = MIN_ACTIVE_PARTICLES) -> int:
    n_active = active_count(gradient, capacity, minimum)
    return int(np.round(n_active * inside_target_fraction(gradient)))


__all__ = [
    "CORE_RANGES",
    "UI_RANGES",
    "ParameterRanges",
    "SimulationParameters",
    "active_count",
    "clamp",
    "configure",
    "crossing_probability",
    "inside_target_count",
    "inside_target_fraction",
    "occupancy_bias",
    "permeation_rates",
    "radius_factor",
    "scene_radius",
    "speed_factor",
]
