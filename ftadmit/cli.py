"""Command-line interface for ftadmit."""

from __future__ import annotations

import argparse
import json
import math
import sys
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, List, Optional

import jsonschema

from ftadmit.logging import get_logger, level_from_flags, set_global_log_level
from ftadmit.scenario import Scenario
from ftadmit.types.base import Level

logger = get_logger(__name__)


def _format_table(
    headers: List[str],
    rows: List[List[Any]],
    min_width: int = 8,
) -> str:
    """Format rows as a plain ASCII table.

    Args:
        headers: Column headers.
        rows: Data rows.
        min_width: Minimum column width.

    Returns:
        Table text, or an empty string without rows.
    """
    if not rows:
        return ""

    cells = [[str(h) for h in headers]] + [[str(item) for item in row] for row in rows]
    widths = [
        max(min_width, max(len(row[i]) for row in cells)) for i in range(len(headers))
    ]

    def format_row(row: List[str]) -> str:
        return "   " + " | ".join(f"{item:<{widths[i]}}" for i, item in enumerate(row))

    lines = [format_row(cells[0])]
    lines.append("   " + "-+-".join("-" * width for width in widths))
    lines.extend(format_row(row) for row in cells[1:])
    return "\n".join(lines)


def _fmt(value: Any) -> str:
    if isinstance(value, float):
        return "-" if math.isnan(value) else f"{value:.2f}"
    return str(value)


def _run_scenario(path: Path, results: Optional[Path], stdout: bool) -> None:
    logger.info("Loading scenario from: %s", path)
    try:
        scenario = Scenario.from_file(path)
    except FileNotFoundError:
        logger.error("Scenario file not found: %s", path)
        print(f"❌ ERROR: Scenario file not found: {path}")
        sys.exit(1)
    except (ValueError, jsonschema.ValidationError) as exc:
        message = getattr(exc, "message", str(exc))
        logger.error("Invalid scenario %s: %s", path, message)
        print(f"❌ ERROR: Invalid scenario: {type(exc).__name__}: {message}")
        sys.exit(1)

    start = perf_counter()
    status = scenario.run()
    elapsed = perf_counter() - start

    summary = status.summary()
    print(f"✅ Simulated {status.processed} request(s) in {elapsed:.3f}s")
    print(
        _format_table(
            ["Metric", "Value"],
            [[name, _fmt(value)] for name, value in summary.items()],
        )
    )
    rejected = {k: v for k, v in status.rejections_by_reason().items() if v}
    if rejected:
        print("\n   Rejections:")
        print(_format_table(["Reason", "Count"], [[k, v] for k, v in rejected.items()]))

    payload: Dict[str, Any] = {
        "scenario": str(path),
        "summary": summary,
        "requests": json.loads(status.to_dataframe().reset_index().to_json(orient="records")),
    }
    if results is not None:
        results.parent.mkdir(parents=True, exist_ok=True)
        results.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"   Results written to: {results}")
    if stdout:
        print(json.dumps(payload, indent=2))


def _inspect_scenario(path: Path) -> None:
    try:
        scenario = Scenario.from_file(path)
        tree = scenario.build_tree()
    except FileNotFoundError:
        logger.error("Scenario file not found: %s", path)
        print(f"❌ ERROR: Scenario file not found: {path}")
        sys.exit(1)
    except (ValueError, jsonschema.ValidationError) as exc:
        message = getattr(exc, "message", str(exc))
        logger.error("Invalid scenario %s: %s", path, message)
        print(f"❌ ERROR: Invalid scenario: {type(exc).__name__}: {message}")
        sys.exit(1)

    print(f"✅ Scenario is valid: {path}")
    print("\n   Topology:")
    rows = []
    for level in Level:
        nodes = tree.nodes_at(level)
        uplinks = [n.uplink for n in nodes if n.uplink is not None]
        capacity = _fmt(float(uplinks[0].capacity)) if uplinks else "-"
        rows.append([level.name.lower(), len(nodes), capacity])
    print(_format_table(["Level", "Nodes", "Uplink capacity"], rows))
    print(f"   VM slots: {tree.total_vm_slots()}")

    print("\n   Admission:")
    admission = scenario.admission
    print(
        _format_table(
            ["Option", "Value"],
            [
                ["collocate", admission.collocate],
                ["share_bandwidth", admission.share_bandwidth],
                ["failure_domain", admission.failure_domain],
                ["enumeration_attempts", admission.enumeration_attempts],
                ["seed", scenario.seed],
            ],
        )
    )

    requests = scenario.requests
    print(f"\n   Workload: {len(requests)} request(s)")
    if requests:
        print(
            _format_table(
                ["Stat", "VMs", "Bandwidth"],
                [
                    ["min", min(r.n_vms for r in requests), _fmt(min(r.bandwidth for r in requests))],
                    ["max", max(r.n_vms for r in requests), _fmt(max(r.bandwidth for r in requests))],
                    ["total", sum(r.n_vms for r in requests), "-"],
                ],
            )
        )


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the ``ftadmit`` command.

    Args:
        argv: Optional list of command-line arguments. If ``None``, ``sys.argv``
            is used.
    """
    parser = argparse.ArgumentParser(
        prog="ftadmit",
        description="Simulate fault-tolerant admission control on a fat-tree.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--quiet", action="store_true", help="Only log warnings and errors"
    )

    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
        title="Available commands",
        metavar="{run,inspect}",
        help="Available commands",
    )

    run_parser = subparsers.add_parser("run", help="Run a scenario")
    run_parser.add_argument("scenario", type=Path, help="Path to scenario YAML")
    run_parser.add_argument(
        "--results",
        "-r",
        type=Path,
        default=None,
        help="Write summary and per-request results to this JSON file",
    )
    run_parser.add_argument(
        "--stdout", action="store_true", help="Print results JSON to stdout"
    )

    inspect_parser = subparsers.add_parser(
        "inspect", help="Validate a scenario and describe it"
    )
    inspect_parser.add_argument("scenario", type=Path, help="Path to scenario YAML")

    effective_args = sys.argv[1:] if argv is None else argv
    if not effective_args:
        parser.print_help()
        raise SystemExit(0)

    args = parser.parse_args(effective_args)
    set_global_log_level(level_from_flags(args.verbose, args.quiet))

    if args.command == "run":
        _run_scenario(args.scenario, args.results, args.stdout)
    elif args.command == "inspect":
        _inspect_scenario(args.scenario)


if __name__ == "__main__":
    main()
