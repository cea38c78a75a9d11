from __future__ import annotations

import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

from catalog_search.services.sync_service import SearchSyncService


INCREMENTAL_SLACK_SECONDS = 60


def create_index_executor(app):
    workers = max(int(app.config.get("ELASTICSEARCH_INDEX_WORKERS", 2)), 1)
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="search-index")


def _reloader_parent(app):
    return app.debug and os.environ.get("WERKZEUG_RUN_MAIN") != "true"


def _run_bootstrap(app):
    with app.app_context():
        try:
            SearchSyncService(app).bootstrap()
        except Exception as exc:  # pragma: no cover - startup safety
            app.logger.exception("Search bootstrap failed: %s", exc)


def schedule_search_bootstrap(app):
    if not app.config.get("ELASTICSEARCH_AUTO_INDEX", True):
        return None
    if _reloader_parent(app):
        return None
    thread = threading.Thread(target=_run_bootstrap, args=(app,), daemon=True)
    thread.start()
    return thread


def run_incremental_pass(app, since):
    """Run one pass and return the start time to use as the next window's lower bound."""
    started = datetime.utcnow()
    with app.app_context():
        SearchSyncService(app).incremental_sync(since)
    return started


def _incremental_loop(app, interval_seconds, initial_delay):
    time.sleep(initial_delay)
    since = datetime.utcnow() - timedelta(seconds=interval_seconds + INCREMENTAL_SLACK_SECONDS)
    while True:
        start_ts = time.time()
        try:
            since = run_incremental_pass(app, since)
        except Exception as exc:  # pragma: no cover - scheduler safety
            app.logger.warning("Incremental search sync failed: %s", exc)
        elapsed = time.time() - start_ts
        time.sleep(max(interval_seconds - elapsed, 1))


def schedule_incremental_sync(app):
    if not app.config.get("SEARCH_INCREMENTAL_SYNC_ENABLED", True):
        return None
    if not app.config.get("ELASTICSEARCH_ENABLED", False):
        return None
    if _reloader_parent(app):
        return None
    interval_seconds = max(int(app.config.get("SEARCH_INCREMENTAL_SYNC_INTERVAL_SECONDS", 300)), 1)
    initial_delay = max(int(app.config.get("SEARCH_INCREMENTAL_SYNC_INITIAL_DELAY_SECONDS", 600)), 0)
    thread = threading.Thread(
        target=_incremental_loop,
        args=(app, interval_seconds, initial_delay),
        daemon=True,
    )
    thread.start()
    return thread
