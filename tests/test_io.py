import json
import math
import os
import numpy as np
import pytest
from retina_core.data_structures import (
    CopulaConfig,
    Option,
    ScenarioVariable,
    TCORParams,
    UtilityParams,
)
from retina_core.engine import simulate
from retina_core.results_io import load_run, save_run


@pytest.fixture
def run():
    options = [
        Option("a", "Expand", expected_return=1_000_000.0, cost=400_000.0),
        Option("b", "Hold", expected_return=0.0, cost=0.0),  # zero capital -> NaN raroc
    ]
    variables = [
        ScenarioVariable("m", "Market", "return", "normal", {"mean": 0.0, "std_dev": 0.1}),
        ScenarioVariable("c", "Input cost", "cost", "triangular", {"min": -0.1, "mode": 0.0, "max": 0.2}),
    ]
    return simulate(
        options,
        variables,
        500,
        7,
        UtilityParams("CARA", 1.0, 1_000_000.0),
        tcor_params=TCORParams(insurance_rate=0.01, contingency_on_cap=0.05),
        horizon_months=6.0,
        copula=CopulaConfig([[1.0, 0.5], [0.5, 1.0]]),
    )


def test_save_and_load_round_trip(tmp_path, run):
    outdir = str(tmp_path / "run")
    save_run(run, outdir)

    assert os.path.exists(os.path.join(outdir, "metadata.json"))
    assert os.path.isdir(os.path.join(outdir, "data.zarr"))

    loaded = load_run(outdir)
    assert loaded.runs == 500
    assert loaded.seed == 7
    assert loaded.horizon_months == 6.0
    assert loaded.utility == run.utility
    assert loaded.metadata == run.metadata
    assert [r.option_id for r in loaded.results] == ["a", "b"]

    for orig, got in zip(run.results, loaded.results):
        np.testing.assert_array_equal(got.outcomes, orig.outcomes)
        assert got.ev == orig.ev
        assert got.var95 == orig.var95
        assert got.cvar95 == orig.cvar95
        assert got.economic_capital == orig.economic_capital
        assert got.expected_utility == orig.expected_utility
        assert got.certainty_equivalent == orig.certainty_equivalent
        assert got.tcor == orig.tcor
        assert got.tcor_components == orig.tcor_components
        assert got.copula_snapshot == orig.copula_snapshot
        assert got.copula_snapshot.k == 2

    assert loaded.results[0].raroc == run.results[0].raroc
    assert math.isnan(loaded.results[1].raroc)


def test_metadata_is_strict_json(tmp_path, run):
    outdir = str(tmp_path / "run")
    save_run(run, outdir)
    with open(os.path.join(outdir, "metadata.json")) as f:
        text = f.read()
    assert "NaN" not in text
    meta = json.loads(text)
    assert meta["options"][1]["raroc"] is None
    assert meta["utility"]["mode"] == "CARA"


def test_option_ids_need_not_be_keys(tmp_path):
    run = simulate([Option("a/b c", "Odd id", 10.0, 5.0)], [], 3, 0)
    save_run(run, str(tmp_path))
    loaded = load_run(str(tmp_path))
    assert loaded.get("a/b c").ev == 5.0
