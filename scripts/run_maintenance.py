#!/usr/bin/env python3
"""
Run image relay maintenance tasks once, outside the server.

Useful from cron on hosts that run the API with SCHEDULER_ENABLED=false,
or after an outage to sweep the cache right away.

Usage:
    python scripts/run_maintenance.py orphan_sweep
    python scripts/run_maintenance.py --all
    python scripts/run_maintenance.py --list

Requires:
    - .env file with ENCRYPTION_KEY, ENCRYPTION_IV and storage credentials
      (or STORAGE_MOCK_MODE=true)
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add the project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from imagerelay.components import build_components  # noqa: E402
from imagerelay.config.settings import get_settings  # noqa: E402
from imagerelay.core.errors import ImageRelayError  # noqa: E402


async def run_tasks(scheduler, names: list[str]) -> bool:
    """Run the named tasks in order. Returns True if all succeeded."""
    ok = True
    for name in names:
        result = await scheduler.run_task(name)
        duration = (result.finished_at - result.started_at).total_seconds()
        if result.success:
            print(f"  {name}: ok ({duration:.2f}s) result={result.result}")
        else:
            print(f"  {name}: FAILED ({duration:.2f}s) {result.error}")
            ok = False

    return ok


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Run image relay maintenance tasks')
    parser.add_argument('tasks', nargs='*', help='Task names to run')
    parser.add_argument('--all', action='store_true', help='Run every task')
    parser.add_argument('--list', action='store_true', help='List task names and exit')
    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=get_settings().log_level.upper(),
    )

    try:
        scheduler = build_components(get_settings()).scheduler
        available = scheduler.task_names
    except ImageRelayError as e:
        print(f"ERROR: {e.message}")
        sys.exit(1)

    if args.list:
        for name in available:
            print(name)
        sys.exit(0)

    names = available if args.all else args.tasks
    if not names:
        parser.error('give at least one task name, or --all')

    unknown = [name for name in names if name not in available]
    if unknown:
        print(f"ERROR: Unknown task(s): {', '.join(unknown)}")
        print(f"Available: {', '.join(available)}")
        sys.exit(1)

    print(f"Running {len(names)} maintenance task(s)")
    try:
        success = asyncio.run(run_tasks(scheduler, names))
    except ImageRelayError as e:
        print(f"ERROR: {e.message}")
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
