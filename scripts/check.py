"""Run ruff and pytest for the collector with report output.

Writes:
    .reports/lint/check.json        - ruff check results (JSON)
    .reports/lint/format_diff.txt   - ruff format --diff output
    .reports/test/pytest.json       - pytest-json-report output
    .reports/test/coverage.json     - coverage.py JSON output
    .reports/test/pytest_output.txt - full pytest console output
    .reports/summary.json           - per-tool status

Stdout:
    [lint] PASS: 0 issues, format OK
    [test] FAIL: 40 passed, 2 failed, 0 skipped | coverage: 83.1%

Usage:
    python scripts/check.py [--verbose]
"""

from __future__ import annotations

import argparse
import json
import subprocess
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parent.parent
REPORTS_DIR = PROJECT_ROOT / ".reports"
TIMEOUT_SECONDS = 300


def _tool_dir(tool: str) -> Path:
    path = REPORTS_DIR / tool
    path.mkdir(parents=True, exist_ok=True)
    return path


def _run(*args: str) -> subprocess.CompletedProcess[str]:
    """Run ``python -m <args>`` from the project root, capturing output."""
    cmd = [sys.executable, "-m", *args]
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            cwd=PROJECT_ROOT,
            timeout=TIMEOUT_SECONDS,
            check=False,
        )
    except subprocess.TimeoutExpired:
        message = f"{args[0]} timed out after {TIMEOUT_SECONDS}s\n"
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr=message)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text())
    except json.JSONDecodeError:
        return default


def _record(tool: str, passed: bool, message: str, details: dict[str, Any]) -> None:
    """Merge one tool's result into summary.json and print its status line."""
    summary_path = REPORTS_DIR / "summary.json"
    summary = _read_json(summary_path, {"tools": {}})
    stamp = datetime.now(UTC).isoformat()
    summary["tools"][tool] = {
        "status": "pass" if passed else "fail",
        "timestamp": stamp,
        **details,
    }
    summary["generated_at"] = stamp
    summary["overall_status"] = (
        "pass"
        if all(t["status"] == "pass" for t in summary["tools"].values())
        else "fail"
    )
    REPORTS_DIR.mkdir(parents=True, exist_ok=True)
    summary_path.write_text(json.dumps(summary, indent=2) + "\n")
    print(f"[{tool}] {'PASS' if passed else 'FAIL'}: {message}")


def run_lint(verbose: bool = False) -> bool:
    """Run ruff check and ruff format --check."""
    report_dir = _tool_dir("lint")
    check = _run("ruff", "check", "--output-format=json", ".")
    check_json = report_dir / "check.json"
    check_json.write_text(check.stdout or "[]")
    issues = _read_json(check_json, [])

    fmt = _run("ruff", "format", "--check", "--diff", ".")
    (report_dir / "format_diff.txt").write_text(fmt.stdout + fmt.stderr)
    format_clean = fmt.returncode == 0

    passed = check.returncode == 0 and format_clean
    format_msg = "format OK" if format_clean else "format: changes needed"
    _record(
        "lint",
        passed,
        f"{len(issues)} issues, {format_msg}",
        {"total_issues": len(issues), "format_clean": format_clean},
    )
    if verbose and not passed:
        print(check.stderr + fmt.stdout)
    return passed


def run_tests(verbose: bool = False) -> bool:
    """Run pytest with coverage and JSON reporting."""
    report_dir = _tool_dir("test")
    pytest_json = report_dir / "pytest.json"
    coverage_json = report_dir / "coverage.json"

    result = _run(
        "pytest",
        "--json-report",
        f"--json-report-file={pytest_json}",
        "--json-report-omit=keywords,streams,log",
        "--cov=portfoliocollector",
        f"--cov-report=json:{coverage_json}",
        "--cov-report=term",
        "-q",
    )
    output = result.stdout + result.stderr
    (report_dir / "pytest_output.txt").write_text(output)

    counts = _read_json(pytest_json, {}).get("summary", {})
    coverage_pct = _read_json(coverage_json, {}).get("totals", {}).get(
        "percent_covered", 0.0
    )
    details = {
        "tests_passed": counts.get("passed", 0),
        "tests_failed": counts.get("failed", 0),
        "tests_skipped": counts.get("skipped", 0),
        "coverage_percent": round(coverage_pct, 1),
    }
    passed = result.returncode == 0
    _record(
        "test",
        passed,
        f"{details['tests_passed']} passed, {details['tests_failed']} failed, "
        f"{details['tests_skipped']} skipped | coverage: {coverage_pct:.1f}%",
        details,
    )
    if verbose:
        print(output)
    return passed


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Lint and test the collector")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)
    lint_ok = run_lint(args.verbose)
    tests_ok = run_tests(args.verbose)
    return 0 if lint_ok and tests_ok else 1


if __name__ == "__main__":
    sys.exit(main())
