from __future__ import annotations

import threading
import time

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

import database
from catalog_search.services.document_mapper import ProductDocumentMapper
from catalog_search.services.search_index import BACKEND_ERRORS, REQUIRED_FIELDS, ProductIndex


class SyncCancelled(Exception):
    pass


class SyncState:
    """Single-flight guard for full syncs plus the cancellation token of the running one."""

    def __init__(self):
        self._lock = threading.Lock()
        self._running = False
        self._cancel = threading.Event()

    def try_acquire(self) -> bool:
        with self._lock:
            if self._running:
                return False
            self._running = True
            self._cancel.clear()
            return True

    def release(self):
        with self._lock:
            self._running = False
            self._cancel.clear()

    @property
    def in_progress(self) -> bool:
        with self._lock:
            return self._running

    def request_cancel(self) -> bool:
        with self._lock:
            if not self._running:
                return False
            self._cancel.set()
            return True

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()


def _unique_ids(product_ids):
    ids = []
    for product_id in product_ids or []:
        if not product_id:
            continue
        product_id = str(product_id)
        if product_id not in ids:
            ids.append(product_id)
    return ids


class SearchSyncService:
    def __init__(self, app=None, index=None, state=None, executor=None, session_factory=None):
        self.app = app or current_app
        self.index = index or ProductIndex(self.app)
        self.state = state or self.app.extensions.get("search_sync_state") or SyncState()
        self._executor = executor
        self.session_factory = session_factory or database.new_session

    @property
    def executor(self):
        return self._executor or self.app.extensions.get("search_executor")

    def is_healthy(self) -> bool:
        return self.index.ping()

    def bootstrap(self) -> str:
        """Startup check: create the index, fill it when empty and warn on drift."""
        if not self.index.is_enabled():
            return "disabled"
        if not self.is_healthy():
            self.app.logger.warning("Elasticsearch is not reachable; skipping search bootstrap.")
            return "unreachable"
        if not self.index.ensure_index():
            return "unreachable"
        if not self.index.mapping_has_fields(REQUIRED_FIELDS):
            self.app.logger.warning("Search index mapping is outdated; rebuilding.")
            if not self.index.rebuild_index():
                return "unreachable"

        session = self.session_factory()
        try:
            total = database.count_products(session)
        finally:
            session.close()
        if total == 0:
            return "empty"

        doc_count = self.index.count_documents()
        if doc_count is None:
            return "unreachable"
        if doc_count == 0:
            self.app.logger.info("Search index is empty; running full sync of %s products.", total)
            self.full_sync()
            return "full_sync"

        ratio = doc_count / total
        threshold = float(self.app.config.get("SEARCH_DRIFT_WARNING_RATIO", 0.9))
        if ratio < threshold:
            self.app.logger.warning(
                "Search index holds %s of %s products (%.0f%%); consider a full reindex.",
                doc_count,
                total,
                ratio * 100,
            )
            return "drift"
        return "ok"

    def full_sync(self) -> bool:
        if not self.index.is_enabled():
            return False
        if not self.state.try_acquire():
            self.app.logger.info("Full search sync already in progress; request dropped.")
            return False

        started = time.monotonic()
        indexed = 0
        session = self.session_factory()
        try:
            self.app.logger.info("Full search sync started.")
            if not self.index.rebuild_index():
                self.app.logger.warning("Full search sync aborted: index could not be cleared.")
                return False
            batch_size = int(self.app.config.get("ELASTICSEARCH_BATCH_SIZE", 50))
            mapper = ProductDocumentMapper(session, self.app)
            for page in database.iter_product_pages(session, batch_size):
                documents = []
                for product in page:
                    self._check_cancelled()
                    document = mapper.to_document(product)
                    if document is not None:
                        documents.append(document)
                self._check_cancelled()
                indexed += self.index.bulk_upsert(documents, raise_on_failure=True)
                self.app.logger.info("Full search sync indexed %s documents so far.", indexed)
            self.app.logger.info(
                "Full search sync finished: %s documents in %d ms.",
                indexed,
                (time.monotonic() - started) * 1000,
            )
            return True
        except SyncCancelled:
            self.app.logger.warning(
                "Full search sync cancelled after %s documents.", indexed
            )
            return False
        except (SQLAlchemyError, *BACKEND_ERRORS) as exc:
            self.app.logger.warning(
                "Full search sync failed after %s documents: %s", indexed, exc
            )
            return False
        finally:
            session.close()
            self.state.release()

    def _check_cancelled(self):
        if self.state.cancelled:
            raise SyncCancelled()

    def cancel_full_sync(self) -> bool:
        cancelled = self.state.request_cancel()
        if cancelled:
            self.app.logger.info("Cancellation requested for the running full search sync.")
        return cancelled

    def incremental_sync(self, since) -> int:
        """Sync every product touched since ``since``; returns the number of ids processed."""
        if not self.index.is_enabled():
            return 0
        if self.state.in_progress:
            self.app.logger.info("Full search sync running; skipping incremental pass.")
            return 0
        if not self.is_healthy():
            self.app.logger.warning("Elasticsearch is not reachable; skipping incremental pass.")
            return 0
        session = self.session_factory()
        try:
            product_ids = database.products_modified_since(session, since)
        except SQLAlchemyError as exc:
            self.app.logger.warning("Incremental search sync lookup failed: %s", exc)
            return 0
        finally:
            session.close()
        if not product_ids:
            self.app.logger.debug("Incremental search sync: nothing changed since %s.", since)
            return 0
        self.sync_products(product_ids)
        self.app.logger.info("Incremental search sync processed %s products.", len(product_ids))
        return len(product_ids)

    def sync_product(self, product_id) -> bool:
        if not product_id or not self.index.is_enabled():
            return False
        product_id = str(product_id)
        session = self.session_factory()
        try:
            product = database.get_product(session, product_id)
            if product is None or product.is_deleted:
                return self.index.delete(product_id)
            document = ProductDocumentMapper(session, self.app).to_document(product)
            return self.index.upsert(document)
        except SQLAlchemyError as exc:
            self.app.logger.warning("Search sync of product %s failed: %s", product_id, exc)
            return False
        finally:
            session.close()

    def sync_products(self, product_ids) -> dict:
        """Upsert live products and delete the rest, including ids that no longer exist."""
        ids = _unique_ids(product_ids)
        result = {"indexed": 0, "deleted": 0}
        if not ids or not self.index.is_enabled():
            return result
        session = self.session_factory()
        try:
            found = {product.id: product for product in database.get_products(session, ids)}
            mapper = ProductDocumentMapper(session, self.app)
            documents = []
            for product_id in ids:
                product = found.get(product_id)
                if product is None or product.is_deleted:
                    continue
                document = mapper.to_document(product)
                if document is not None:
                    documents.append(document)
        except SQLAlchemyError as exc:
            self.app.logger.warning("Search batch sync lookup failed: %s", exc)
            return result
        finally:
            session.close()

        stale = [
            product_id
            for product_id in ids
            if product_id not in found or found[product_id].is_deleted
        ]
        result["indexed"] = self.index.bulk_upsert(documents)
        result["deleted"] = sum(1 for product_id in stale if self.index.delete(product_id))
        return result

    def remove(self, product_id) -> bool:
        if not product_id:
            return False
        return self.index.delete(str(product_id))

    def _submit(self, label, func, *args):
        if self.executor is None:
            raise RuntimeError("Search executor is not configured")
        app = self.app

        def task():
            with app.app_context():
                try:
                    return func(*args)
                except Exception:
                    app.logger.exception("Background search %s failed", label)
                    return None

        return self.executor.submit(task)

    def index_one(self, product_id):
        return self._submit("index of %s" % product_id, self.sync_product, product_id)

    def index_many(self, product_ids):
        ids = _unique_ids(product_ids)
        if not ids:
            return None
        return self._submit("batch index", self.sync_products, ids)

    def delete(self, product_id):
        return self._submit("delete of %s" % product_id, self.remove, product_id)

    def reindex_all(self) -> bool:
        if self.state.in_progress:
            self.app.logger.info("Full search sync already in progress; request dropped.")
            return False
        self._submit("full sync", self.full_sync)
        return True

    def get_sync_stats(self) -> dict:
        indexed = self.index.count_documents()
        total = None
        session = self.session_factory()
        try:
            total = database.count_products(session)
        except SQLAlchemyError as exc:
            self.app.logger.warning("Counting products for sync stats failed: %s", exc)
        finally:
            session.close()
        return {
            "indexed_count": indexed or 0,
            "total_in_db": total or 0,
            "sync_in_progress": self.state.in_progress,
            "backend_healthy": self.is_healthy(),
            "index_count_failed": indexed is None and self.index.is_enabled(),
            "db_count_failed": total is None,
        }
