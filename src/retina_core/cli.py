import argparse
import logging
import sys

from .errors import RetinaError
from .experiment_manager import (
    run_experiment_from_config,
    list_experiments,
    summarize_experiment,
    check_goal_dependencies,
    credit_report,
)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Retina decision-simulation core")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    sub = parser.add_subparsers(dest="cmd")

    # ------------------------------------------------------------------
    # run
    # ------------------------------------------------------------------
    p_run = sub.add_parser("run", help="Run a decision simulation from a YAML config")
    p_run.add_argument("config", type=str, help="Path to .yaml config file")
    p_run.add_argument("--root", default="results", help="Output root directory")

    # ------------------------------------------------------------------
    # list
    # ------------------------------------------------------------------
    p_list = sub.add_parser("list", help="List previous simulation runs")
    p_list.add_argument("--root", default="results", help="Output root directory")

    # ------------------------------------------------------------------
    # summary
    # ------------------------------------------------------------------
    p_sum = sub.add_parser("summary", help="Regenerate the report of a saved run")
    p_sum.add_argument("run_dir", type=str, help="Path to run output directory")

    # ------------------------------------------------------------------
    # check-deps
    # ------------------------------------------------------------------
    p_deps = sub.add_parser("check-deps", help="Check a config's goal graph for cycles")
    p_deps.add_argument("config", type=str, help="Path to .yaml config file")

    # ------------------------------------------------------------------
    # credit
    # ------------------------------------------------------------------
    p_credit = sub.add_parser("credit", help="Score partner credit risk per option")
    p_credit.add_argument("config", type=str, help="Path to .yaml config file")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.cmd == "run":
            run_experiment_from_config(args.config, root=args.root)

        elif args.cmd == "list":
            list_experiments(args.root)

        elif args.cmd == "summary":
            summarize_experiment(args.run_dir)

        elif args.cmd == "check-deps":
            return 0 if check_goal_dependencies(args.config) else 1

        elif args.cmd == "credit":
            credit_report(args.config)

        else:
            parser.print_help()

    except RetinaError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    return 0
