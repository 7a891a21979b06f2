#!/usr/bin/env python3
"""
Queue Status Script

Show pending telemetry submissions and optionally submit them right away.
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import load_config
from core.logger import setup_logging
from submission.telemetry import TelemetryCore
from submission.trigger import PollingTrigger


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Inspect the pending submission queue")
    parser.add_argument("-c", "--config", help="Path to a YAML configuration file")
    parser.add_argument(
        "--drain",
        action="store_true",
        help="Submit every pending job once, ignoring network and idle conditions",
    )
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    config = load_config(args.config)
    setup_logging(
        level=config.logging.level,
        log_format="text",
        console_output=True,
    )

    core = TelemetryCore(config)
    await core.start()
    try:
        records = await core.queue.pending()
        print(f"Submission enabled: {core.is_enabled()}")
        print(f"Pending jobs: {len(records)}")
        for record in records:
            print(
                f"  #{record.job_id} {record.kind.value:<4} "
                f"{record.fields.get('package', '?')} "
                f"queued {record.created_at.isoformat()}"
            )

        if args.drain and isinstance(core.trigger, PollingTrigger):
            failed = 0
            for record in records:
                if record.job_id not in core.trigger.handles:
                    continue
                if await core.trigger.fire(record.job_id):
                    failed += 1
            print(f"Drained: {len(records) - failed} sent, {failed} left pending")
    finally:
        await core.stop()

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
