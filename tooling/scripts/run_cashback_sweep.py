"""Trigger the cashback confirmation sweep once.

Intended usage: schedule via cron when the in-process sweeper is disabled.

Example:
    python tooling/scripts/run_cashback_sweep.py --batch-size 500
"""

from __future__ import annotations

import sys
from pathlib import Path


def main() -> int:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from cashheros_api.jobs.cashback_sweep import main as run_sweep  # type: ignore import-position

    return run_sweep(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
