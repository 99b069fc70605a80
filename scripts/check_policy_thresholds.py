#!/usr/bin/env python3
"""CI enforcement: warn on hard-coded policy thresholds in the engines.

Detects comparisons like ``minutes >= 20`` or ``days > 45`` in the SLA,
command-action, and scorecard engines.  Those numbers belong in
``dealer_mcp/policy.py`` so a dealership can tune them without code edits.

Exit 0 (warning only) unless ``--strict`` is passed.
"""

from __future__ import annotations

import ast
import sys
from pathlib import Path

PACKAGE_DIR = Path(__file__).resolve().parent.parent / "dealer_mcp"

TARGET_FILES = (
    PACKAGE_DIR / "command" / "sla.py",
    PACKAGE_DIR / "command" / "actions.py",
    PACKAGE_DIR / "metrics" / "scorecard.py",
)

# SLA minutes, hot-lead score floor, and aging-inventory days
KNOWN_THRESHOLDS = {5, 10, 20, 45, 75, 80}

_COMPARISONS = (ast.GtE, ast.Gt, ast.LtE, ast.Lt)


def check_file(path: Path) -> list[str]:
    violations: list[str] = []
    try:
        tree = ast.parse(path.read_text())
    except (SyntaxError, FileNotFoundError) as exc:
        print(f"ERROR: cannot parse {path}: {exc}", file=sys.stderr)
        return violations

    for node in ast.walk(tree):
        if not isinstance(node, ast.Compare):
            continue
        for op, comparator in zip(node.ops, node.comparators):
            if not isinstance(op, _COMPARISONS) or not isinstance(comparator, ast.Constant):
                continue
            value = comparator.value
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                if value in KNOWN_THRESHOLDS:
                    violations.append(
                        f"{path.name}:{node.lineno}: hard-coded threshold "
                        f"comparison ({value})"
                    )
    return violations


def check(paths: tuple[Path, ...] = TARGET_FILES) -> list[str]:
    violations: list[str] = []
    for path in paths:
        violations.extend(check_file(path))
    return violations


def main() -> None:
    violations = check()
    if violations:
        print("WARNING: hard-coded policy thresholds found:")
        for v in violations:
            print(f"  {v}")
        print("\nMove these into a policy dataclass in dealer_mcp/policy.py.")
        sys.exit(1 if "--strict" in sys.argv[1:] else 0)
    else:
        print("OK: engine thresholds all come from dealer_mcp.policy")


if __name__ == "__main__":
    main()
