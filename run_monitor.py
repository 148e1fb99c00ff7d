"""Run one check of every configured job and print the outcome as JSON.

Usage::

    python run_monitor.py [--settings data/settings.json] [--import jobs.json]
    python run_monitor.py --probe https://example.com/news ".headline"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Ensure the src directory is on the Python path so the pagewatch package can be imported
SRC_PATH = Path(__file__).resolve().parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from pagewatch.config import JobCatalog  # noqa: E402  (import after path setup)
from pagewatch.errors import StoreError  # noqa: E402
from pagewatch.monitor import Monitor  # noqa: E402


async def _run(monitor: Monitor, args: argparse.Namespace) -> str:
    try:
        if args.probe:
            url, locator = args.probe
            result = await monitor.probe(url, locator)
        else:
            result = await monitor.orchestrator.run_all()
        return result.model_dump_json(indent=2)
    finally:
        await monitor.aclose()


def main() -> None:
    """Load the settings, optionally import jobs, and run a single batch."""

    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--settings", help="Path to the settings JSON file")
    parser.add_argument("--import", dest="import_path", help="Add the jobs defined in this JSON file first")
    parser.add_argument("--probe", nargs=2, metavar=("URL", "LOCATOR"), help="Preview a selector and exit")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    try:
        monitor = Monitor.from_file(args.settings)
    except ValueError as exc:
        logging.error("Could not load settings: %s", exc)
        sys.exit(1)

    if args.import_path:
        try:
            catalog = JobCatalog.from_file(args.import_path)
        except (FileNotFoundError, ValueError) as exc:
            logging.error("Could not load job definitions: %s", exc)
            sys.exit(1)
        added = monitor.import_jobs(definition.model_dump(mode="json") for definition in catalog.jobs)
        logging.info("Imported %d jobs", len(added))

    try:
        output = asyncio.run(_run(monitor, args))
    except StoreError as exc:
        logging.error("Check failed: %s", exc)
        sys.exit(1)

    print(output)


if __name__ == "__main__":
    main()
