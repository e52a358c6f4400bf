#!/usr/bin/env python3
"""
Multi-tenancy scoping lint check.

Scans the backend for queries that could read another business's rows:
1. Hardcoded business_id / branch_id values
2. select() on tenant tables without a business_id filter nearby
3. Unscoped branch lookups outside the public booking page

USAGE:
    python scripts/check_tenant_scoping.py

    # Detailed findings, failing on CRITICAL/HIGH (for CI)
    python scripts/check_tenant_scoping.py -v --strict

    # Only the findings that fail CI
    python scripts/check_tenant_scoping.py --min-severity HIGH

EXIT CODES:
    0 - No issues found (or only warnings without --strict)
    1 - Critical or high issues found with --strict
"""

import argparse
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

# ────────────────────────────────────────────────────────────────
# Configuration
# ────────────────────────────────────────────────────────────────

SCAN_ROOT = Path(__file__).parent.parent / "Backend" / "kyros"

EXCLUDE_PATTERNS = [
    "__pycache__",
    ".pyc",
    "tenancy/",  # Query helpers apply the scoping themselves
]

# Lines after a query start searched for its tenant filter
CONTEXT_LINES = 6

TENANT_MODELS = ["Service", "Employee", "Client", "Appointment", "Branch", "UserProfile"]

BAD_PATTERNS: List[Tuple[str, str, str]] = [
    # (pattern, severity, description)
    (
        r"^[A-Z_]*BUSINESS_ID\s*=\s*\d+",
        "CRITICAL",
        "Hardcoded BUSINESS_ID constant - pass an ActorContext instead",
    ),
    (
        r"business_id\s*=\s*\d+[,\)\s]",
        "WARNING",
        "Hardcoded business_id value - should come from the ActorContext",
    ),
    (
        r"branch_id\s*=\s*\d+[,\)\s]",
        "WARNING",
        "Hardcoded branch_id value - should come from the request or ActorContext",
    ),
    *[
        (
            rf"select\({model}\)",
            "HIGH",
            f"{model} query without business_id filter - potential cross-tenant leak",
        )
        for model in TENANT_MODELS
    ],
    (
        r"\bget_branch\(",
        "INFO",
        "Unscoped branch lookup - only the public booking page may use it",
    ),
]

IGNORE_PATTERNS = [
    r"^\s*#",  # Comments
    r"noqa:\s*tenant-scoping",  # Explicit suppression
    r"business_id: int",  # Type annotations
]

SCOPED_CONTEXT = re.compile(r"\.business_id\s*==|scoped_select\(|tenant_filter\(|require_owned\(")


# ────────────────────────────────────────────────────────────────
# Data Classes
# ────────────────────────────────────────────────────────────────

@dataclass
class Finding:
    """A single tenant scoping issue."""

    file: Path
    line_num: int
    line_text: str
    severity: str
    description: str


# ────────────────────────────────────────────────────────────────
# Scanning Logic
# ────────────────────────────────────────────────────────────────

def should_exclude(path: Path) -> bool:
    path_str = path.as_posix()
    return any(excl in path_str for excl in EXCLUDE_PATTERNS)


def should_ignore_line(line: str) -> bool:
    return any(re.search(pattern, line) for pattern in IGNORE_PATTERNS)


def scan_source(file_path: Path, content: str) -> List[Finding]:
    """Findings for one file's source text."""
    findings = []
    lines = content.split("\n")

    for line_num, line in enumerate(lines, 1):
        if should_ignore_line(line):
            continue

        for pattern, severity, description in BAD_PATTERNS:
            if not re.search(pattern, line):
                continue
            if severity == "HIGH":
                window = "\n".join(lines[line_num - 1:line_num + CONTEXT_LINES])
                if SCOPED_CONTEXT.search(window):
                    continue
            findings.append(Finding(
                file=file_path,
                line_num=line_num,
                line_text=line,
                severity=severity,
                description=description,
            ))

    return findings


def scan_file(file_path: Path) -> List[Finding]:
    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as e:
        print(f"Warning: Could not read {file_path}: {e}", file=sys.stderr)
        return []
    return scan_source(file_path, content)


def scan_directory(root: Path) -> List[Finding]:
    all_findings = []
    for path in sorted(root.rglob("*.py")):
        if should_exclude(path):
            continue
        all_findings.extend(scan_file(path))
    return all_findings


# ────────────────────────────────────────────────────────────────
# Reporting
# ────────────────────────────────────────────────────────────────

SEVERITY_ORDER = ["CRITICAL", "HIGH", "WARNING", "INFO"]
FAILING_SEVERITIES = ("CRITICAL", "HIGH")


def at_least(findings: List[Finding], min_severity: str) -> List[Finding]:
    """Findings at `min_severity` or worse."""
    cutoff = SEVERITY_ORDER.index(min_severity)
    return [f for f in findings if SEVERITY_ORDER.index(f.severity) <= cutoff]


def print_report(findings: List[Finding], verbose: bool = False):
    if not findings:
        print("Tenant scoping: clean.")
        return

    counts = {sev: sum(1 for f in findings if f.severity == sev) for sev in SEVERITY_ORDER}
    summary = ", ".join(f"{count} {sev.lower()}" for sev, count in counts.items() if count)
    print(f"Tenant scoping: {len(findings)} findings ({summary})")

    if not verbose:
        print("Run with -v to list them.")
        return

    by_file = {}
    for f in findings:
        by_file.setdefault(f.file, []).append(f)
    for path, file_findings in by_file.items():
        print(f"\n{path}")
        for f in sorted(file_findings, key=lambda f: (SEVERITY_ORDER.index(f.severity), f.line_num)):
            print(f"  {f.line_num:>5}  {f.severity:<8} {f.description}")
            print(f"         > {f.line_text.strip()[:80]}")


# ────────────────────────────────────────────────────────────────
# Main
# ────────────────────────────────────────────────────────────────

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Check Kyros queries for tenant scoping issues")
    parser.add_argument("-v", "--verbose", action="store_true", help="List every finding")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with code 1 on CRITICAL or HIGH findings (for CI)",
    )
    parser.add_argument(
        "--min-severity",
        choices=SEVERITY_ORDER,
        default="INFO",
        help="Hide findings below this severity",
    )
    parser.add_argument("--path", type=Path, default=SCAN_ROOT, help=f"Directory to scan (default: {SCAN_ROOT})")
    args = parser.parse_args(argv)

    if not args.path.is_dir():
        print(f"Error: {args.path} is not a directory", file=sys.stderr)
        return 1

    findings = at_least(scan_directory(args.path), args.min_severity)
    print_report(findings, verbose=args.verbose)

    failing = [f for f in findings if f.severity in FAILING_SEVERITIES]
    if args.strict and failing:
        print(f"{len(failing)} critical/high findings. Failing.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
