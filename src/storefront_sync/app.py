"""Application entry point: sets up the cache and runs the sync loop headless."""

import logging
import signal
import sys

from PySide6.QtCore import QCoreApplication, QThreadPool, QTimer

from storefront_sync.config import Config
from storefront_sync.database.connection import DatabaseConnection
from storefront_sync.database.schema import initialize_database

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None):
    """Send log records to stderr at *level* (default ``Config.LOG_LEVEL``)."""
    level = (level or Config.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


def main():
    """Run the storefront sync engine until interrupted."""
    configure_logging()

    # Initialize database
    db = DatabaseConnection(Config.DATABASE_PATH)
    initialize_database(db)

    app = QCoreApplication(sys.argv)
    app.setApplicationName("storefront-sync")

    # Import here so the schema is in place before anything touches it
    from storefront_sync.database.repository import Repository
    from storefront_sync.read_model import CacheReadModel
    from storefront_sync.remote.gateway import RemoteGateway
    from storefront_sync.sync.orchestrator import SyncOrchestrator
    from storefront_sync.sync.scheduler import SyncScheduler

    pool = QThreadPool()
    pool.setMaxThreadCount(max(Config.WORKER_THREADS, 1))

    repo = Repository(db)
    gateway = RemoteGateway()
    orchestrator = SyncOrchestrator(repo, gateway)
    scheduler = SyncScheduler(orchestrator, pool=pool)
    read_model = CacheReadModel(repo, pool=pool)

    read_model.watch_all_listings(
        lambda listings: logger.info("Cache holds %d listings", len(listings))
    )
    orchestrator.stage_failed.connect(
        lambda f: logger.warning("Sync stage %s failed: %s", f.stage, f.message)
    )

    def shutdown():
        scheduler.stop()
        read_model.close()
        # Let in-flight runs write their results before the client closes
        pool.waitForDone()
        gateway.close()

    app.aboutToQuit.connect(shutdown)
    signal.signal(signal.SIGINT, lambda *_: app.quit())

    # Wake the event loop periodically so Python can deliver SIGINT
    heartbeat = QTimer()
    heartbeat.timeout.connect(lambda: None)
    heartbeat.start(500)

    logger.info("Syncing against %s", Config.API_BASE_URL)
    scheduler.start(run_initial=Config.SYNC_ON_START)
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
