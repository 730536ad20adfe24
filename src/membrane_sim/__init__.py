"""
Membrane Diffusion Simulation Library

A spherical cell exchanges particles with its surroundings through a
semi-permeable membrane:
- MembraneSimulator: per-frame biased random walk with stochastic permeation
- ParticlePool / reseed: fixed-capacity particle arena and occupancy reseeding
- RateAggregator / CrossingQueue: crossing rates and transient crossing events
- compute_diffusion_rate: closed-form relative rate readout
"""

from .simulation import MembraneSimulator, SimulationConfig, run_model
from .params import CORE_RANGES, UI_RANGES, SimulationParameters, configure
from .pool import ParticlePool, reseed
from .events import CrossingEvent, CrossingQueue, OccupancyCounts, RateAggregator, RateSample
from .analytic import compute_diffusion_rate
from . import analysis, utils

__all__ = [
    # Simulator
    "MembraneSimulator",
    "SimulationConfig",
    "run_model",
    # Parameters
    "SimulationParameters",
    "CORE_RANGES",
    "UI_RANGES",
    "configure",
    # State and observables
    "ParticlePool",
    "reseed",
    "CrossingEvent",
    "CrossingQueue",
    "OccupancyCounts",
    "RateAggregator",
    "RateSample",
    "compute_diffusion_rate",
    # Utilities
    "analysis",
    "utils",
]
