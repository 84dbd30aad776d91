"""Report validator — checks a structured (JSON) report before it is published.

Checks:
  1. Top-level keys ``report_id``, ``generated_at``, ``data``, ``meta`` present
  2. ``meta.data_sources`` non-empty
  3. Every alert has a known type and priority
  4. Insight (when present) has a known sentiment and confidence within [0, 100]
  5. Snapshot has at least one view

Usage:
    python -m financeflow.pipeline.validator output/financeflow_report_<id>.json
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

from financeflow.models.datatypes import AlertKind, Priority, Sentiment

_REQUIRED_KEYS = ["report_id", "generated_at", "data", "meta"]
_ALERT_KINDS = {k.value for k in AlertKind}
_PRIORITIES = {p.value for p in Priority}
_SENTIMENTS = {s.value for s in Sentiment}


def validate(report: Union[str, Path, Dict[str, Any]]) -> Tuple[bool, List[str]]:
    """Run all validation checks against a structured report.

    Args:
        report: Path to a ``.json`` report, or the already parsed canonical dict.

    Returns:
        Tuple of ``(passed: bool, messages: list[str])``.
        ``messages`` contains PASS/FAIL lines for each check.
    """
    messages: List[str] = []
    passed = True

    # ── load ──────────────────────────────────────────────────────────────────
    if isinstance(report, dict):
        data = report
    else:
        try:
            with open(report, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return False, [f"FAIL  file not found: {report}"]
        except (OSError, ValueError) as exc:
            return False, [f"FAIL  could not read report JSON: {exc}"]

    # ── key presence ──────────────────────────────────────────────────────────
    if not isinstance(data, dict):
        return False, ["FAIL  report is not a JSON object"]
    missing = [k for k in _REQUIRED_KEYS if k not in data]
    if missing:
        return False, [f"FAIL  missing keys: {missing}"]
    messages.append(f"PASS  report {data['report_id']} has all top-level keys")

    body = data["data"] or {}
    meta = data["meta"] or {}

    # ── check 2: provenance ───────────────────────────────────────────────────
    sources = meta.get("data_sources") or []
    if sources:
        messages.append(f"PASS  data_sources = {sources}")
    else:
        messages.append("FAIL  data_sources is empty")
        passed = False

    # ── check 3: alerts ───────────────────────────────────────────────────────
    alerts = body.get("alerts") or []
    bad_alerts = [
        (i, a.get("type"), a.get("priority"))
        for i, a in enumerate(alerts)
        if a.get("type") not in _ALERT_KINDS or a.get("priority") not in _PRIORITIES
    ]
    if not bad_alerts:
        messages.append(f"PASS  {len(alerts)} alert(s) with valid type/priority")
    else:
        messages.append(f"FAIL  invalid alerts in {len(bad_alerts)} entries: {bad_alerts[:3]}")
        passed = False

    # ── check 4: insight ──────────────────────────────────────────────────────
    insight = body.get("insight")
    if insight is None:
        messages.append("PASS  no insight attached")
    else:
        confidence = insight.get("confidence")
        if isinstance(confidence, (int, float)) and 0 <= confidence <= 100:
            messages.append(f"PASS  insight confidence = {confidence} (0-100)")
        else:
            messages.append(f"FAIL  insight confidence out of range: {confidence!r}")
            passed = False
        if insight.get("sentiment") in _SENTIMENTS:
            messages.append(f"PASS  insight sentiment = {insight['sentiment']}")
        else:
            messages.append(f"FAIL  unknown insight sentiment: {insight.get('sentiment')!r}")
            passed = False

    # ── check 5: snapshot ─────────────────────────────────────────────────────
    views = (body.get("snapshot") or {}).get("views") or {}
    if views:
        messages.append(f"PASS  snapshot views = {sorted(views)}")
    else:
        messages.append("FAIL  snapshot has no views")
        passed = False

    return passed, messages


def main() -> int:
    if len(sys.argv) < 2:
        print("Usage: python -m financeflow.pipeline.validator <path_to_report_json>")
        return 1
    passed, messages = validate(sys.argv[1])
    for msg in messages:
        print(msg)
    if passed:
        print("\nVALIDATION PASSED ✓")
        return 0
    else:
        print("\nVALIDATION FAILED ✗")
        return 1


if __name__ == "__main__":
    sys.exit(main())
