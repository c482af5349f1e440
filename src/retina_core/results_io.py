import os
import json
import dataclasses
import zarr
import numpy as np

from .data_structures import (
    CopulaSnapshot,
    SimulationResult,
    SimulationRun,
    TCORComponents,
    UtilityParams,
)


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------


def _save_array(store, key, arr):
    if arr is None:
        return
    store.array(key, arr, chunks=True, overwrite=True)


def _load_array(store, key):
    return store[key][...] if key in store else None


def _group_name(i: int) -> str:
    # option ids are free text; groups are keyed by position
    return f"opt_{i:04d}"


def _nan_to_none(val):
    if val is None:
        return None
    return None if np.isnan(val) else float(val)


def _result_meta(res: SimulationResult) -> dict:
    return {
        "option_id": res.option_id,
        "option_label": res.option_label,
        "ev": res.ev,
        "var95": res.var95,
        "cvar95": res.cvar95,
        "economic_capital": res.economic_capital,
        "raroc": _nan_to_none(res.raroc),  # JSON has no NaN
        "horizon_months": res.horizon_months,
        "expected_utility": res.expected_utility,
        "certainty_equivalent": res.certainty_equivalent,
        "tcor": res.tcor,
        "tcor_components": (
            dataclasses.asdict(res.tcor_components) if res.tcor_components else None
        ),
        "achieved_spearman": res.achieved_spearman,
        "copula_snapshot": (
            dataclasses.asdict(res.copula_snapshot) if res.copula_snapshot else None
        ),
    }


# ------------------------------------------------------------
# Save SimulationRun -> directory (metadata.json + data.zarr)
# ------------------------------------------------------------


def save_run(run: SimulationRun, outdir: str):
    os.makedirs(outdir, exist_ok=True)

    meta = {
        "runs": run.runs,
        "seed": run.seed,
        "horizon_months": run.horizon_months,
        "utility": dataclasses.asdict(run.utility) if run.utility else None,
        "metadata": run.metadata,
        "options": [_result_meta(r) for r in run.results],
    }
    with open(os.path.join(outdir, "metadata.json"), "w") as f:
        json.dump(meta, f, indent=2)

    root = zarr.open_group(os.path.join(outdir, "data.zarr"), mode="w")
    opts_grp = root.create_group("options")
    for i, res in enumerate(run.results):
        g = opts_grp.create_group(_group_name(i))
        _save_array(g, "outcomes", res.outcomes)


# ------------------------------------------------------------
# Load directory -> SimulationRun
# ------------------------------------------------------------


def load_run(outdir: str) -> SimulationRun:
    with open(os.path.join(outdir, "metadata.json"), "r") as f:
        meta = json.load(f)

    root = zarr.open_group(os.path.join(outdir, "data.zarr"), mode="r")
    opts_grp = root["options"]

    results = []
    for i, m in enumerate(meta["options"]):
        comps = m.get("tcor_components")
        snap = m.get("copula_snapshot")
        raroc = m.get("raroc")
        results.append(
            SimulationResult(
                option_id=m["option_id"],
                option_label=m["option_label"],
                outcomes=_load_array(opts_grp[_group_name(i)], "outcomes"),
                ev=m["ev"],
                var95=m["var95"],
                cvar95=m["cvar95"],
                economic_capital=m["economic_capital"],
                raroc=float("nan") if raroc is None else raroc,
                horizon_months=m["horizon_months"],
                expected_utility=m.get("expected_utility"),
                certainty_equivalent=m.get("certainty_equivalent"),
                tcor=m.get("tcor"),
                tcor_components=TCORComponents(**comps) if comps else None,
                achieved_spearman=m.get("achieved_spearman"),
                copula_snapshot=CopulaSnapshot(**snap) if snap else None,
            )
        )

    return SimulationRun(
        results=results,
        runs=meta["runs"],
        seed=meta["seed"],
        horizon_months=meta.get("horizon_months"),
        utility=UtilityParams(**meta["utility"]) if meta.get("utility") else None,
        metadata=meta.get("metadata", {}),
    )
