"""Structured report validator."""

import json

from conftest import FIXED_NOW, make_global, make_item, make_snapshot
from financeflow.pipeline.report import ReportRenderer, compose_report
from financeflow.pipeline.validator import main, validate


def _canonical():
    report = compose_report(
        make_snapshot([make_item()], global_metrics=make_global()), None, [],
        duration_ms=5, report_id="rpt_1_deadbeef", clock=lambda: FIXED_NOW,
    )
    return ReportRenderer().to_canonical(report)


def test_valid_report_passes():
    passed, messages = validate(_canonical())
    assert passed
    assert all(m.startswith("PASS") for m in messages)


def test_missing_keys_fail_fast():
    canonical = _canonical()
    del canonical["meta"]
    passed, messages = validate(canonical)
    assert not passed
    assert messages == ["FAIL  missing keys: ['meta']"]


def test_bad_alerts_and_insight_fail():
    canonical = _canonical()
    canonical["data"]["alerts"] = [{"type": "panic", "priority": "high", "title": "x", "message": "y"}]
    canonical["data"]["insight"] = {"sentiment": "euphoric", "confidence": 140}
    canonical["meta"]["data_sources"] = []

    passed, messages = validate(canonical)

    assert not passed
    failures = [m for m in messages if m.startswith("FAIL")]
    assert len(failures) == 4


def test_validates_file_and_cli(tmp_path, capsys, monkeypatch):
    path = tmp_path / "report.json"
    path.write_text(json.dumps(_canonical()), encoding="utf-8")

    assert validate(str(path))[0]

    monkeypatch.setattr("sys.argv", ["validator", str(path)])
    assert main() == 0
    assert "VALIDATION PASSED" in capsys.readouterr().out


def test_missing_file(tmp_path):
    passed, messages = validate(str(tmp_path / "nope.json"))
    assert not passed
    assert messages[0].startswith("FAIL  file not found")
