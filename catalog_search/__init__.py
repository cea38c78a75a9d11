import os

from flask import Flask

from constants import SEARCH_DEFAULTS
from database import SessionLocal, init_db
from catalog_search.blueprints.search import search_bp
from catalog_search.services.search_events import SearchWriteHooks
from catalog_search.services.search_index import ProductIndex
from catalog_search.services.search_indexer import (
    create_index_executor,
    schedule_incremental_sync,
    schedule_search_bootstrap,
)
from catalog_search.services.search_service import ProductSearchService
from catalog_search.services.sync_service import SearchSyncService, SyncState


def create_app(config=None):
    app = Flask(__name__)
    app.secret_key = os.environ.get("CATALOG_SEARCH_SECRET_KEY", "change-me")
    app.config.from_mapping(SEARCH_DEFAULTS)
    if config:
        app.config.update(config)
    init_db()

    index = ProductIndex(app)
    app.extensions["search_executor"] = create_index_executor(app)
    app.extensions["search_sync_state"] = SyncState()
    app.extensions["product_search"] = ProductSearchService(app, index=index)
    app.extensions["search_sync"] = SearchSyncService(app, index=index)

    hooks = SearchWriteHooks(app)
    if app.config.get("SEARCH_SYNC_ON_WRITE", True):
        hooks.register()
    app.extensions["search_write_hooks"] = hooks

    app.register_blueprint(search_bp)
    schedule_search_bootstrap(app)
    schedule_incremental_sync(app)

    @app.teardown_appcontext
    def remove_db_session(exception=None):
        SessionLocal.remove()

    return app
