#!/usr/bin/env python3
"""
Run the generation scheduler as a dedicated worker.

Usage: python scripts/run_scheduler_worker.py --steps mypipeline.steps:build_steps
"""
import argparse
import asyncio
import os

from beatgen.core.config import settings
from beatgen.db import create_db_and_tables, engine
from beatgen.worker import load_steps, run_worker


def parse_args():
    parser = argparse.ArgumentParser(description="Run the single-flight generation scheduler")
    parser.add_argument(
        "--steps",
        default=os.getenv("GENERATION_STEPS"),
        help="Step factory as 'module:callable' (env: GENERATION_STEPS)",
    )
    return parser.parse_args()


async def main():
    args = parse_args()
    if not args.steps:
        raise SystemExit("No step factory given (use --steps or GENERATION_STEPS)")

    create_db_and_tables(engine)
    await run_worker(load_steps(args.steps), engine, settings)


if __name__ == "__main__":
    asyncio.run(main())
