import os
import numpy as np
import pandas as pd
from .data_structures import SimulationRun, SimulationResult
from .credit_risk import compute_credit_risk_score


# ------------------------------------------------------------
# Formatting helpers
# ------------------------------------------------------------


def _format_currency(val: float) -> str:
    if val is None or not np.isfinite(val):
        return "N/A"
    return f"${val:,.2f}"


def _format_pct(val: float) -> str:
    return f"{val * 100:.2f}%"


def _format_float(val) -> str:
    if val is None or not np.isfinite(val):
        return "N/A"
    return f"{val:.4f}"


def _prob_loss(res: SimulationResult) -> float:
    return float(np.count_nonzero(res.outcomes < 0) / res.outcomes.size)


# ------------------------------------------------------------
# Tabular view
# ------------------------------------------------------------


def results_frame(run: SimulationRun) -> pd.DataFrame:
    """One row per option with its headline metrics."""
    rows = []
    for res in run.results:
        rows.append(
            {
                "option_id": res.option_id,
                "label": res.option_label,
                "ev": res.ev,
                "std": float(np.std(res.outcomes)),
                "var95": res.var95,
                "cvar95": res.cvar95,
                "economic_capital": res.economic_capital,
                "raroc": res.raroc,
                "p_loss": _prob_loss(res),
                "expected_utility": res.expected_utility,
                "certainty_equivalent": res.certainty_equivalent,
                "tcor": res.tcor,
            }
        )
    return pd.DataFrame(rows).set_index("option_id") if rows else pd.DataFrame()


def rank_options(run: SimulationRun, by: str = "raroc") -> pd.DataFrame:
    """Options sorted best-first by ``by``; NaN metrics sort last."""
    df = results_frame(run)
    if df.empty:
        return df
    if by not in df.columns:
        raise KeyError(f"Unknown metric: {by}")
    return df.sort_values(by, ascending=False, na_position="last")


# ------------------------------------------------------------
# Main summary generation
# ------------------------------------------------------------


def generate_summary(run: SimulationRun, out_dir: str, options=None) -> str:
    """
    Write a quantitative markdown report of ``run`` to out_dir/summary.md.

    ``options`` (the Option inputs) adds a credit-risk table when given.
    """
    lines = []

    lines.append(f"# Decision Simulation Report: {os.path.basename(os.path.normpath(out_dir))}\n")
    lines.append(f"**Timestamp:** {pd.Timestamp.now()}\n")
    lines.append(f"**Options:** {', '.join(r.option_label for r in run.results)}\n")

    # --- 1. Simulation Parameters ---
    lines.append("## 1. Simulation Parameters\n")
    lines.append("| Parameter | Value |")
    lines.append("| :--- | :--- |")
    lines.append(f"| Runs | {run.runs:,} |")
    lines.append(f"| Seed | {run.seed} |")
    horizon = run.horizon_months if run.horizon_months is not None else "12 (default)"
    lines.append(f"| Horizon (months) | {horizon} |")
    if run.utility is not None:
        lines.append(
            f"| Utility | {run.utility.mode} (a={run.utility.a}, scale={run.utility.scale}) |"
        )
    snap = run.results[0].copula_snapshot if run.results else None
    if snap is not None:
        repaired = " after nearest-PD projection" if snap.repaired else ""
        lines.append(
            f"| Copula | k={snap.k}, Frobenius error {snap.fro_err:.4f}{repaired} |"
        )
    lines.append("\n")

    if not run.results:
        lines.append("_No options simulated._\n")
        return _write(out_dir, lines)

    results = run.results
    names = [r.option_label for r in results]

    def metric_row(metric_name: str, func) -> str:
        return f"| {metric_name} | " + " | ".join(func(r) for r in results) + " |"

    # --- 2. Option Scorecard ---
    lines.append("## 2. Option Scorecard\n")
    lines.append("| Metric | " + " | ".join(names) + " |")
    lines.append("| :--- | " + " | ".join([":---"] * len(results)) + " |")
    lines.append(metric_row("Expected Value", lambda r: _format_currency(r.ev)))
    lines.append(metric_row("VaR 95%", lambda r: _format_currency(r.var95)))
    lines.append(metric_row("CVaR 95%", lambda r: _format_currency(r.cvar95)))
    lines.append(metric_row("Economic Capital", lambda r: _format_currency(r.economic_capital)))
    lines.append(metric_row("RAROC", lambda r: _format_float(r.raroc)))
    lines.append(metric_row("P(Loss)", lambda r: _format_pct(_prob_loss(r))))
    if run.utility is not None:
        lines.append(metric_row("Expected Utility", lambda r: _format_float(r.expected_utility)))
        lines.append(
            metric_row("Certainty Equivalent", lambda r: _format_currency(r.certainty_equivalent))
        )
    if any(r.tcor is not None for r in results):
        lines.append(metric_row("TCOR", lambda r: _format_currency(r.tcor)))
    lines.append("\n")

    # --- 3. Ranking ---
    lines.append("## 3. Ranking by RAROC\n")
    ranked = rank_options(run, "raroc")
    for pos, (opt_id, row) in enumerate(ranked.iterrows(), start=1):
        lines.append(f"{pos}. {row['label']} (`{opt_id}`): RAROC {_format_float(row['raroc'])}")
    lines.append("\n")

    # --- 4. Credit Risk ---
    if options and any(o.partners for o in options):
        lines.append("## 4. Partner Credit Risk\n")
        lines.append("| Option | Score | Level | Total Exposure | Avg Dependency |")
        lines.append("| :--- | :--- | :--- | :--- | :--- |")
        for o in options:
            cr = compute_credit_risk_score(o.partners, options)
            lines.append(
                f"| {o.label} | {cr.score} | {cr.level} | "
                f"{_format_currency(cr.total_exposure)} | {cr.average_dependency:.2f} |"
            )
        lines.append("\n")

    return _write(out_dir, lines)


def _write(out_dir: str, lines) -> str:
    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, "summary.md")
    with open(path, "w") as f:
        f.write("\n".join(lines))
    return path
