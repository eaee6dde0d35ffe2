"""Run one full sync against the remote catalog and print the stage report.

Run:
    python -m execution.run_sync                 (from project root)
    python execution/run_sync.py --merchants     (merchant stages only)
    python execution/run_sync.py --base-url http://host:3000/

Exit status is 0 when every stage succeeded and 1 otherwise.
"""

import argparse
import os
import sys

# Ensure project src is on the path
_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(_ROOT, "src"))

from storefront_sync.app import configure_logging
from storefront_sync.config import Config
from storefront_sync.database.connection import DatabaseConnection
from storefront_sync.database.repository import Repository
from storefront_sync.database.schema import initialize_database
from storefront_sync.remote.gateway import RemoteGateway
from storefront_sync.sync.orchestrator import MERCHANT_STAGES, SyncOrchestrator


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--base-url", default=None,
                        help=f"Remote service URL (default {Config.API_BASE_URL})")
    parser.add_argument("--db", default=None,
                        help=f"Cache database (default {Config.DATABASE_PATH})")
    parser.add_argument("--merchants", action="store_true",
                        help="Only run the merchant stages")
    args = parser.parse_args(argv)

    configure_logging()
    db = DatabaseConnection(args.db or Config.DATABASE_PATH)
    initialize_database(db)
    repo = Repository(db)

    with RemoteGateway(base_url=args.base_url) as gateway:
        orchestrator = SyncOrchestrator(repo, gateway)
        report = orchestrator.run(MERCHANT_STAGES if args.merchants else None)

    print("\nSync report")
    print("=" * 40)
    for stage in report.stages:
        line = f"  {stage.name:<18} {stage.status}"
        if stage.report is not None:
            counts = stage.report.as_dict()
            line += "  " + "  ".join(f"{k}={v}" for k, v in counts.items())
        elif stage.failure is not None:
            line += f"  {stage.failure.error_type}: {stage.failure.message}"
        elif stage.reason:
            line += f"  ({stage.reason})"
        print(line)

    counts = {table: len(rows) for table, rows in repo.snapshot().items()}
    print("\nCache contents:")
    for table, count in counts.items():
        print(f"  {table:<10} {count}")
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
