"""
Membrane diffusion simulator.

Owns one particle pool, one crossing-event queue and one rate aggregator.
The host drives it explicitly:

    sim = MembraneSimulator(SimulationConfig(seed=1))
    sim.configure({"radius_um": 12, "gradient": 0.6, "temperature_c": 25})
    for _ in range(600):
        sim.step(1 / 60)

There is no internal clock; every call to ``step`` advances the model by
the ``delta`` it is given.
"""

from __future__ import annotations

import math
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from . import utils
from .engine import StepEngine
from .events import (
    DEFAULT_EVENT_CAPACITY,
    DEFAULT_EVENT_TTL,
    DEFAULT_WINDOW,
    CrossingEvent,
    CrossingQueue,
    OccupancyCounts,
    RateAggregator,
    RateSample,
)
from .params import (
    CORE_RANGES,
    MAX_PARTICLES,
    MIN_ACTIVE_PARTICLES,
    ParameterRanges,
    SimulationParameters,
    configure,
    inside_target_fraction,
    scene_radius,
)
from .pool import ParticlePool, reseed

INSIDE_COLOR = (0.937, 0.267, 0.267)  # red
OUTSIDE_COLOR = (0.133, 0.773, 0.369)  # green


@dataclass
class SimulationConfig:
    radius_um: float = 12.0
    gradient: float = 0.6
    temperature_c: float = 25.0
    capacity: int = MAX_PARTICLES
    min_active: int = MIN_ACTIVE_PARTICLES
    window: float = DEFAULT_WINDOW
    event_ttl: float = DEFAULT_EVENT_TTL
    event_capacity: int = DEFAULT_EVENT_CAPACITY
    dt: float = 1.0 / 60.0
    duration: float = 10.0
    seed: Optional[int] = None
    verbose: bool = False
    check_invariants: bool = True

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError(f"capacity must be positive, got {self.capacity}")
        if not 0 <= self.min_active <= self.capacity:
            raise ValueError(f"min_active must be within [0, capacity], got {self.min_active}")
        for name in ("window", "event_ttl", "dt"):
            value = getattr(self, name)
            if not (math.isfinite(value) and value > 0.0):
                raise ValueError(f"{name} must be positive and finite, got {value}")
        if self.event_capacity <= 0:
            raise ValueError(f"event_capacity must be positive, got {self.event_capacity}")
        if self.duration < 0.0:
            raise ValueError(f"duration must be non-negative, got {self.duration}")

    @property
    def parameters(self) -> SimulationParameters:
        return SimulationParameters(self.radius_um, self.gradient, self.temperature_c)


class MembraneSimulator:
    """
    Particle exchange across a spherical semi-permeable membrane.

    Callbacks ``on_counts(OccupancyCounts)`` and ``on_rates(RateSample)``
    fire once per sampling window.  ``rng`` is any object with a numpy-style
    ``random(size)`` method; it defaults to ``numpy.random.default_rng(seed)``.
    """

    def __init__(
        self,
        config: SimulationConfig | None = None,
        *,
        rng=None,
        ranges: ParameterRanges = CORE_RANGES,
        on_counts: Optional[Callable[[OccupancyCounts], None]] = None,
        on_rates: Optional[Callable[[RateSample], None]] = None,
    ) -> None:
        self.config = config or SimulationConfig()
        self.rng = rng if rng is not None else utils.make_rng(self.config.seed)
        self.ranges = ranges
        self.on_counts = on_counts
        self.on_rates = on_rates

        self.pool = ParticlePool(self.config.capacity, self.config.min_active)
        self.engine = StepEngine(self.pool, self.rng)
        self.queue = CrossingQueue(self.config.event_ttl, self.config.event_capacity)
        self.aggregator = RateAggregator(self.config.window)

        self.params = configure(self.config.parameters, self.ranges)
        self.radius = scene_radius(self.params.radius_um)
        self.last_counts: Optional[OccupancyCounts] = None
        self.reseed()

    # ------------------------------------------------------------------
    # Parameter changes
    # ------------------------------------------------------------------

    def configure(self, params: SimulationParameters | Dict[str, Any]) -> SimulationParameters:
        """
        Apply new slider values between steps.

        Fields missing from a dict keep their current value; unknown keys
        raise ValueError.  A change of gradient or membrane radius reseeds
        the pool.
        """
        if isinstance(params, dict):
            utils.check_keys(params, SimulationParameters)
            merged = asdict(self.params)
            merged.update(params)
            params = SimulationParameters(**merged)
        new = configure(params, self.ranges)
        new_radius = scene_radius(new.radius_um)
        needs_reseed = new.gradient != self.params.gradient or new_radius != self.radius

        self.params = new
        self.radius = new_radius
        if needs_reseed:
            self.reseed()
        return new

    def reseed(self) -> None:
        n_active, n_inside = reseed(self.pool, self.params.gradient, self.radius, self.rng)
        self.queue.clear()
        self.aggregator.reset()
        if self.config.verbose:
            print(
                f"[membrane] reseed gradient={self.params.gradient:.2f} active={n_active} "
                f"inside={n_inside} target={inside_target_fraction(self.params.gradient):.2f}"
            )

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def step(self, delta: float) -> Optional[RateSample]:
        """
        Advance the simulation by ``delta`` seconds.

        Returns the RateSample emitted at the end of a sampling window, or
        None.  A non-positive delta changes nothing.  Bursts from this step
        are queued first and then aged with the rest, so each one is shown
        for at most ``event_ttl`` seconds including the frame that made it.
        """
        if not delta > 0.0:
            return None

        crossings = self.engine.step(
            delta, self.radius, self.params.gradient, self.params.temperature_c
        )
        self.queue.extend_from_crossings(crossings, self.pool.positions, self.radius)
        self.queue.age(delta)
        self.aggregator.record(crossings)
        if self.config.check_invariants:
            self.pool.assert_consistent(self.radius)

        sample = self.aggregator.advance(delta)
        if sample is None:
            return None

        counts = self.occupancy()
        self.last_counts = counts
        if self.on_counts is not None:
            self.on_counts(counts)
        if self.on_rates is not None:
            self.on_rates(sample)
        if self.config.verbose:
            print(
                f"[membrane] t={sample.time:.1f} inside={counts.inside} outside={counts.outside} "
                f"in={sample.in_rate:.1f}/s out={sample.out_rate:.1f}/s"
            )
        return sample

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def active_count(self) -> int:
        return self.pool.active_count

    @property
    def positions(self) -> np.ndarray:
        view = self.pool.positions[: self.pool.active_count]
        view.flags.writeable = False
        return view

    @property
    def outside(self) -> np.ndarray:
        view = self.pool.outside[: self.pool.active_count]
        view.flags.writeable = False
        return view

    @property
    def events(self) -> List[CrossingEvent]:
        return list(self.queue)

    def occupancy(self) -> OccupancyCounts:
        inside, outside = self.pool.occupancy()
        return OccupancyCounts(inside=inside, outside=outside)

    def side_colors(self) -> np.ndarray:
        """RGB per active particle: red inside, green outside."""
        return np.where(
            self.outside[:, None],
            np.asarray(OUTSIDE_COLOR),
            np.asarray(INSIDE_COLOR),
        )

    def snapshot(self) -> Dict[str, Any]:
        counts = self.occupancy()
        return {
            "time": self.aggregator.time,
            "radius": self.radius,
            "params": asdict(self.params),
            "active": self.pool.active_count,
            "inside": counts.inside,
            "outside": counts.outside,
            "events": len(self.queue),
            "rejected": self.engine.rejected_total,
        }


def run_model(params: SimulationConfig | dict | None = None, *, rng=None) -> utils.SimulationTrace:
    """
    Run a headless simulation for ``duration`` with a fixed ``dt`` and
    return the sampled trace.
    """
    if params is None:
        params = SimulationConfig()
    elif isinstance(params, dict):
        utils.check_keys(params, SimulationConfig)
        params = SimulationConfig(**params)
    start_time = time.time()

    samples: List[RateSample] = []
    counts: List[OccupancyCounts] = []
    sim = MembraneSimulator(params, rng=rng, on_counts=counts.append, on_rates=samples.append)

    n_steps = int(round(params.duration / params.dt))
    for _ in range(n_steps):
        sim.step(params.dt)

    trace = utils.SimulationTrace(
        times=np.array([s.time for s in samples], dtype=np.float64),
        in_rates=np.array([s.in_rate for s in samples], dtype=np.float64),
        out_rates=np.array([s.out_rate for s in samples], dtype=np.float64),
        inside=np.array([c.inside for c in counts], dtype=np.int64),
        outside=np.array([c.outside for c in counts], dtype=np.int64),
    )
    meta = trace.ensure_meta()
    meta.update(
        {
            "model": "membrane",
            "radius_um": float(sim.params.radius_um),
            "gradient": float(sim.params.gradient),
            "temperature_c": float(sim.params.temperature_c),
            "scene_radius": float(sim.radius),
            "active": int(sim.active_count),
            "target_fraction": float(inside_target_fraction(sim.params.gradient)),
            "dt": float(params.dt),
            "duration": float(params.duration),
            "seed": params.seed,
            "rejected": int(sim.engine.rejected_total),
            "time_elapsed": time.time() - start_time,
        }
    )
    if params.verbose:
        print(
            f"Simulation completed: {n_steps} steps, {len(samples)} samples "
            f"in {meta['time_elapsed']:.2f}s"
        )
    return trace


__all__ = [
    "MembraneSimulator",
    "SimulationConfig",
    "run_model",
]
