import os
import textwrap
import pytest
from retina_core.data_structures import DEFAULT_GAME_MULTIPLIERS
from retina_core.errors import ConfigurationError
from retina_core.experiment_manager import (
    build_copula,
    build_dependence,
    build_game,
    build_goal,
    build_option,
    build_utility_params,
    build_variable,
    check_goal_dependencies,
    credit_report,
    discover_runs,
    load_config,
    run_experiment_from_config,
    summarize_experiment,
)

CONFIG = """
name: pricing
runs: 400
seed: 42
horizon_months: 12.0
utility:
  mode: CARA
  a: 1.0
  scale: 1000000.0
tcor:
  insurance_rate: 0.01
  contingency_on_cap: 0.05
options:
  - id: launch
    label: Launch
    expected_return: 1000000.0
    cost: 600000.0
    partners:
      - id: distributor
        credit_exposure: 250000.0
        dependency_score: 0.6
  - id: license
    label: License
    expected_return: 400000.0
    cost: 100000.0
variables:
  - id: demand
    name: Demand
    applies_to: return
    dist: normal
    params: {mean: 0.0, std_dev: 0.15}
  - id: materials
    name: Materials
    applies_to: cost
    dist: triangular
    params: {min: -0.05, mode: 0.0, max: 0.2}
goals:
  - goal_id: fund
  - goal_id: build
    depends_on: [fund]
  - goal_id: ship
    depends_on: [build]
"""


def write(tmp_path, text, name="cfg.yaml"):
    path = tmp_path / name
    path.write_text(textwrap.dedent(text))
    return str(path)


def test_build_option_defaults():
    opt = build_option({"id": "x", "expected_return": 5})
    assert opt.label == "x"
    assert opt.expected_return == 5.0
    assert opt.cost == 0.0
    assert opt.mitigation_cost is None
    assert opt.horizon_months is None
    assert opt.partners == []


def test_build_option_partners():
    opt = build_option(
        {"id": "x", "partners": [{"id": "p", "credit_exposure": 10, "dependency_score": 0.5}]}
    )
    assert opt.partners[0].credit_exposure == 10.0
    assert opt.partners[0].dependency_score == 0.5


def test_build_option_bad_number():
    with pytest.raises(ConfigurationError, match="expected_return"):
        build_option({"id": "x", "expected_return": "lots"})


def test_build_variable():
    var = build_variable(
        {"id": "v", "dist": "uniform", "params": {"min": 0, "max": 1}, "weight": 0.5}
    )
    assert var.name == "v"
    assert var.applies_to == "return"
    assert var.params == {"min": 0.0, "max": 1.0}
    assert var.weight == 0.5


def test_build_variable_requires_dist():
    with pytest.raises(ConfigurationError, match="dist"):
        build_variable({"id": "v", "params": {}})


def test_optional_builders():
    assert build_utility_params(None) is None
    assert build_dependence(None) is None
    assert build_game(None) is None

    up = build_utility_params({"mode": "CRRA", "a": 2})
    assert (up.mode, up.a, up.scale) == ("CRRA", 2.0, 1.0)

    dep = build_dependence({"var_a_id": "a", "var_b_id": "b", "target_rho": 0.3})
    assert dep.target_rho == 0.3

    game = build_game({})
    assert game.p_undercut == 0.4
    assert game.multipliers == DEFAULT_GAME_MULTIPLIERS


def test_build_goal():
    g = build_goal({"goal_id": "a", "depends_on": ["b"]})
    assert g.depends_on == ["b"]
    assert g.enables == []


def test_load_config_rejects_non_mapping(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(write(tmp_path, "- just\n- a list\n"))


def test_run_experiment_from_config(tmp_path, capsys):
    cfg = write(tmp_path, CONFIG)
    root = str(tmp_path / "results")

    outdir = run_experiment_from_config(cfg, root=root)

    assert outdir.startswith(root)
    assert outdir.endswith("_pricing")
    for name in ("metadata.json", "data.zarr", "summary.md", "config_used.yaml"):
        assert os.path.exists(os.path.join(outdir, name))
    assert discover_runs(root) == [os.path.basename(outdir)]
    assert "Done." in capsys.readouterr().out

    with open(os.path.join(outdir, "summary.md")) as f:
        text = f.read()
    assert "Launch" in text
    assert "Partner Credit Risk" in text

    os.remove(os.path.join(outdir, "summary.md"))
    summarize_experiment(outdir)
    assert os.path.exists(os.path.join(outdir, "summary.md"))


def test_run_experiment_invalid_config_writes_nothing(tmp_path):
    cfg = write(
        tmp_path,
        """
        options:
          - id: a
            expected_return: 1.0
        variables:
          - id: v
            dist: normal
            params: {mean: 0.0}
        """,
    )
    root = tmp_path / "results"
    with pytest.raises(ConfigurationError, match="std_dev"):
        run_experiment_from_config(cfg, root=str(root))
    assert not root.exists()


def test_check_goal_dependencies_ok(tmp_path, capsys):
    assert check_goal_dependencies(write(tmp_path, CONFIG)) is True
    assert "Goal order: fund → build → ship" in capsys.readouterr().out


def test_check_goal_dependencies_cycle(tmp_path, capsys):
    cfg = write(
        tmp_path,
        """
        goals:
          - goal_id: A
            depends_on: [B]
          - goal_id: B
            depends_on: [C]
          - goal_id: C
            depends_on: [A]
        """,
    )
    assert check_goal_dependencies(cfg) is False
    out = capsys.readouterr().out
    assert "Circular dependency detected:" in out
    assert "A → B → C → A" in out


def test_credit_report(tmp_path, capsys):
    scores = credit_report(write(tmp_path, CONFIG))
    assert scores["launch"].score == 100
    assert scores["launch"].level == "High"
    assert scores["license"].score == 0
    assert "Launch" in capsys.readouterr().out


def test_build_copula():
    assert build_copula(None) is None
    cop = build_copula({"matrix": [[1, 0.3], [0.3, 1]]})
    assert cop.matrix == [[1.0, 0.3], [0.3, 1.0]]
    assert cop.k == 2
    assert cop.use_nearest_pd is True
    assert build_copula({"matrix": [[1.0]], "use_nearest_pd": False}).use_nearest_pd is False

    with pytest.raises(ConfigurationError, match="matrix"):
        build_copula({})
    with pytest.raises(ConfigurationError):
        build_copula({"matrix": [1.0, 0.3]})


def test_run_experiment_with_copula(tmp_path):
    cfg = write(
        tmp_path,
        CONFIG + "copula:\n  matrix: [[1.0, -0.4], [-0.4, 1.0]]\n",
    )
    outdir = run_experiment_from_config(cfg, root=str(tmp_path / "results"))
    with open(os.path.join(outdir, "summary.md")) as f:
        assert "| Copula | k=2" in f.read()
