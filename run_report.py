"""FinanceFlow report entry point.

Usage:
    python run_report.py [--format structured|text] [--limit N] [--config config.yaml]

Loads config.yaml, builds the engine, generates one market report, writes it
to ``output/financeflow_report_<id>.{json,md}`` and reports success/failure
to stdout and the pipeline log.
"""

import argparse
import asyncio
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()  # must precede financeflow imports so env vars are available at module load

from financeflow.core.config import Settings, load_config  # noqa: E402
from financeflow.core.logger import logger  # noqa: E402
from financeflow.pipeline.engine import FinanceFlowEngine  # noqa: E402

_EXTENSIONS = {"structured": "json", "text": "md"}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a FinanceFlow market report.")
    parser.add_argument(
        "--format",
        default="structured",
        choices=["structured", "json", "text", "markdown"],
        help="Report format (default: structured)",
    )
    parser.add_argument("--limit", type=int, default=None, help="Number of listings (max 50)")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Generate a report. Returns 0 on success, 1 on failure."""
    args = parse_args(argv)
    try:
        settings = Settings.from_config(load_config(args.config))
    except (FileNotFoundError, ValueError) as exc:
        logger.error(f"run_report: failed to load config: {exc}")
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    engine = FinanceFlowEngine(settings)
    result = asyncio.run(engine.generate_report(limit=args.limit, fmt=args.format))
    if not result.ok:
        print(f"ERROR: {result.failure['kind']} — {result.failure['message']}", file=sys.stderr)
        return 1

    payload = result.payload
    os.makedirs(settings.output_dir, exist_ok=True)
    path = os.path.join(
        settings.output_dir,
        f"financeflow_report_{payload['report_id']}.{_EXTENSIONS[payload['format']]}",
    )
    with open(path, "w", encoding="utf-8") as f:
        f.write(payload["content"])

    print(f"SUCCESS: report {payload['report_id']} written to {path}")
    logger.info(f"run_report: completed — {payload['report_id']} → {path} ({result.duration_ms} ms)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
