from __future__ import annotations

import os
import sys

os.environ.setdefault("ELASTICSEARCH_AUTO_INDEX", "0")
os.environ.setdefault("SEARCH_INCREMENTAL_SYNC_ENABLED", "0")
os.environ.setdefault("SEARCH_SYNC_ON_WRITE", "0")

from catalog_search import create_app
from catalog_search.services.sync_service import SearchSyncService


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    app = create_app()
    with app.app_context():
        service = SearchSyncService(app)
        if not service.index.is_enabled():
            print("Elasticsearch is disabled or missing. Set ELASTICSEARCH_ENABLED=1.")
            return 1
        if not service.is_healthy():
            print("Elasticsearch is not reachable.")
            return 1

        if "--stats" in argv:
            for key, value in service.get_sync_stats().items():
                print(f"{key}: {value}")
            return 0

        if "--ids" in argv:
            ids = argv[argv.index("--ids") + 1 :]
            if not ids:
                print("No product ids given.")
                return 1
            result = service.sync_products(ids)
            print(f"Indexed {result['indexed']}, deleted {result['deleted']}.")
            return 0

        print("Running full reindex...")
        if not service.full_sync():
            print("Full reindex failed or another one is running; see the log.")
            return 1
        stats = service.get_sync_stats()
        print(f"Done. Indexed {stats['indexed_count']} / {stats['total_in_db']} products.")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
