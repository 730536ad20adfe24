import json

import numpy as np
import pytest

from membrane_sim import SimulationConfig, analysis, utils
from membrane_sim.analytic import compute_diffusion_rate


def _relaxing_trace(f_inf=0.7, f0=0.4, tau=2.5, n=20, active=1000):
    times = np.arange(1, n + 1, dtype=np.float64)
    fraction = analysis.relaxation_curve(times, f_inf, f0, tau)
    inside = np.round(fraction * active).astype(np.int64)
    return utils.SimulationTrace(
        times=times,
        in_rates=np.full(n, 30.0) + 0.5 * times,
        out_rates=np.full(n, 20.0),
        inside=inside,
        outside=active - inside,
        meta={"model": "membrane"},
    )


def test_fit_relaxation_recovers_parameters():
    fit = analysis.fit_relaxation(_relaxing_trace())
    assert fit.f_inf == pytest.approx(0.7, abs=0.01)
    assert fit.tau == pytest.approx(2.5, rel=0.1)


def test_net_flux_trend_slope():
    trend = analysis.net_flux_trend(_relaxing_trace())
    assert trend["slope"] == pytest.approx(0.5)
    assert trend["intercept"] == pytest.approx(10.0)
    assert trend["mean_net"] > 0.0


def test_summary_and_short_trace():
    summary = analysis.summarize_trace(_relaxing_trace())
    assert summary["in_out_ratio"] > 1.0
    assert 0.0 < summary["final_inside_fraction"] < 1.0

    with pytest.raises(ValueError):
        analysis.fit_relaxation(_relaxing_trace(n=2))
    with pytest.raises(ValueError):
        analysis.summarize_trace(utils.SimulationTrace())


def test_trace_save_and_load(tmp_path):
    trace = _relaxing_trace()
    path = tmp_path / "runs" / "trace.npz"
    utils.save_trace(path, trace)
    loaded = utils.load_trace(path)
    assert np.array_equal(loaded.inside, trace.inside)
    assert np.allclose(loaded.in_rates, trace.in_rates)
    assert loaded.meta["model"] == "membrane"

    with pytest.raises(FileExistsError):
        utils.save_trace(path, trace, overwrite=False)


def test_load_params_json_and_toml(tmp_path):
    json_path = tmp_path / "params.json"
    json_path.write_text(json.dumps({"gradient": 0.8, "seed": 5}))
    assert utils.load_params(json_path) == {"gradient": 0.8, "seed": 5}

    toml_path = tmp_path / "params.toml"
    toml_path.write_text("gradient = 0.2\nradius_um = 20.0\n")
    if utils.tomllib is not None:
        assert utils.load_params(toml_path) == {"gradient": 0.2, "radius_um": 20.0}

    with pytest.raises(ValueError):
        utils.load_params(tmp_path / "params.yaml")


def test_load_params_checks_keys_against_schema(tmp_path):
    path = tmp_path / "params.json"
    path.write_text(json.dumps({"gradient": 0.8, "temp": 30.0}))
    assert utils.load_params(path)["temp"] == 30.0
    with pytest.raises(ValueError, match="temp"):
        utils.load_params(path, schema=SimulationConfig)

    path.write_text(json.dumps({"gradient": 0.8, "seed": 5, "dt": 0.05}))
    assert utils.load_params(path, schema=SimulationConfig)["dt"] == 0.05

    path.write_text(json.dumps([0.8]))
    with pytest.raises(ValueError):
        utils.load_params(path)


def test_analytic_rate_relative_to_baseline():
    base = compute_diffusion_rate({"radius_um": 12.0, "gradient": 0.6, "temperature_c": 25.0})
    assert base.relative_rate == pytest.approx(1.0)
    assert base.sa_to_v == pytest.approx(3.0 / 12.0)

    smaller = compute_diffusion_rate({"radius_um": 6.0, "gradient": 0.6, "temperature_c": 25.0})
    assert smaller.relative_rate == pytest.approx(2.0)

    warmer = compute_diffusion_rate({"radius_um": 12.0, "gradient": 0.6, "temperature_c": 35.0})
    assert warmer.temperature_factor == pytest.approx(2.0)

    clamped = compute_diffusion_rate({"radius_um": 0.0, "gradient": 3.0, "temperature_c": 500.0})
    assert clamped.surface_area == pytest.approx(4.0 * np.pi)
    assert clamped.temperature_factor == pytest.approx(2.0 ** 5.5)
