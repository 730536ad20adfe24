"""
Closed-form diffusion rate readout.

Rate ∝ (SA:V) * ΔC * Q10-temperature factor / membrane thickness, reported
relative to a baseline cell (radius 12 µm, ΔC 0.6, 25 °C).  For a sphere
SA:V = 3 / r, so larger cells equilibrate slower.  Units are intentionally
light; this is a teaching readout, not a transport model.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from .params import CORE_RANGES, ParameterRanges, SimulationParameters, configure

MEMBRANE_THICKNESS_UM = 0.01
Q10 = 2.0
REFERENCE_TEMP_C = 25.0
BASELINE = SimulationParameters(radius_um=12.0, gradient=0.6, temperature_c=25.0)


@dataclass(frozen=True)
class DiffusionRate:
    surface_area: float
    volume: float
    sa_to_v: float
    temperature_factor: float
    raw_rate: float
    relative_rate: float


def _raw_rate(params: SimulationParameters) -> tuple[float, float, float, float, float]:
    r = params.radius_um
    surface_area = 4.0 * math.pi * r * r
    volume = (4.0 / 3.0) * math.pi * r ** 3
    sa_to_v = surface_area / volume
    temperature_factor = Q10 ** ((params.temperature_c - REFERENCE_TEMP_C) / 10.0)
    raw = (sa_to_v / MEMBRANE_THICKNESS_UM) * params.gradient * temperature_factor
    return surface_area, volume, sa_to_v, temperature_factor, raw


def compute_diffusion_rate(
    inputs: SimulationParameters | dict | None = None,
    ranges: ParameterRanges = CORE_RANGES,
) -> DiffusionRate:
    """Relative diffusion rate for the clamped inputs."""
    params = configure(inputs, ranges)
    surface_area, volume, sa_to_v, temperature_factor, raw = _raw_rate(params)
    *_, baseline_raw = _raw_rate(BASELINE)
    return DiffusionRate(
        surface_area=surface_area,
        volume=volume,
        sa_to_v=sa_to_v,
        temperature_factor=temperature_factor,
        raw_rate=raw,
        relative_rate=raw / baseline_raw,
    )
