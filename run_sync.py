"""Run one fleet sync from the command line (cron or manual backfill).

    python run_sync.py                       # every enabled connection
    python run_sync.py --tenant-id t1        # one tenant, all providers
    python run_sync.py --provider samsara    # one provider, all tenants
"""
import argparse
import json
import sys
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

from fleetsync.db import Base, SessionLocal, get_engine  # noqa: E402
from fleetsync.exceptions import FleetSyncError  # noqa: E402
from fleetsync.services import ENTITIES, run_sync, summary_status_code  # noqa: E402
from fleetsync.utils import logger  # noqa: E402
import fleetsync.models  # noqa: E402,F401


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Sync fleet vehicles and locations from telematics providers.")
    parser.add_argument("--tenant-id", default=None, help="Only sync this tenant")
    parser.add_argument("--provider", choices=["motive", "samsara"], default=None, help="Only sync this provider")
    parser.add_argument(
        "--entities", nargs="+", choices=list(ENTITIES), default=list(ENTITIES),
        help="Which feeds to pull (default: both)",
    )
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables before syncing")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    try:
        engine = get_engine()
        if args.create_tables:
            Base.metadata.create_all(bind=engine)
        db = SessionLocal(bind=engine)
    except FleetSyncError as e:
        logger.error("Cannot start sync: %s", e)
        return 2

    try:
        summary = run_sync(db, tenant_id=args.tenant_id, provider=args.provider, entities=args.entities)
    except FleetSyncError as e:
        logger.error("Sync aborted: %s", e)
        return 2
    finally:
        db.close()

    print(json.dumps(summary.model_dump(exclude_none=True), indent=2))
    return 1 if summary_status_code(summary) == 502 else 0


if __name__ == "__main__":
    sys.exit(main())
