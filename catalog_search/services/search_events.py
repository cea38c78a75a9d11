from __future__ import annotations

from sqlalchemy import event, inspect

import database
from database import SessionLocal
from models import (
    Brand,
    Category,
    InventoryStock,
    Product,
    ProductImage,
    ProductSelectionGroup,
    ProductSelectionOption,
    ProductVariant,
    Store,
)
from catalog_search.services.sync_service import SearchSyncService


PENDING_KEY = "search_pending_product_ids"


def product_id_for(obj):
    """Return the owning product id of a catalog row, or None for unrelated rows."""
    if isinstance(obj, Product):
        return obj.id
    if isinstance(obj, (ProductVariant, ProductImage, ProductSelectionGroup)):
        return obj.product_id
    if isinstance(obj, InventoryStock):
        variant = obj.variant
        return variant.product_id if variant is not None else None
    if isinstance(obj, ProductSelectionOption):
        group = obj.group
        return group.product_id if group is not None else None
    return None


def _changed(obj, *attributes):
    state = inspect(obj)
    return any(state.attrs[name].history.has_changes() for name in attributes)


def _category_subtree(category):
    ids = []
    stack = [category]
    while stack:
        node = stack.pop()
        if node.id is None or node.id in ids:
            continue
        ids.append(node.id)
        stack.extend(node.children)
    return ids


def referencing_product_ids(session, obj):
    """Products whose documents copy a label or path from a changed brand, store or category row."""
    if isinstance(obj, Brand) and _changed(obj, "name"):
        return database.product_ids_referencing(session, brand_ids=[obj.id])
    if isinstance(obj, Store) and _changed(obj, "store_name"):
        return database.product_ids_referencing(session, store_ids=[obj.id])
    if isinstance(obj, Category):
        if _changed(obj, "parent", "parent_id"):
            return database.product_ids_referencing(session, category_ids=_category_subtree(obj))
        if _changed(obj, "name"):
            return database.product_ids_referencing(session, category_ids=[obj.id])
    return set()


class SearchWriteHooks:
    """Keep the index in step with committed catalog writes made through ``SessionLocal``."""

    def __init__(self, app, target=SessionLocal):
        self.app = app
        self.target = target
        self.registered = False

    def register(self):
        if self.registered:
            return
        event.listen(self.target, "after_flush", self.after_flush)
        event.listen(self.target, "after_commit", self.after_commit)
        event.listen(self.target, "after_rollback", self.after_rollback)
        self.registered = True

    def unregister(self):
        if not self.registered:
            return
        event.remove(self.target, "after_flush", self.after_flush)
        event.remove(self.target, "after_commit", self.after_commit)
        event.remove(self.target, "after_rollback", self.after_rollback)
        self.registered = False

    def after_flush(self, session, flush_context):
        pending = session.info.setdefault(PENDING_KEY, set())
        for obj in list(session.new) + list(session.dirty) + list(session.deleted):
            product_id = product_id_for(obj)
            if product_id:
                pending.add(str(product_id))
        for obj in list(session.dirty):
            pending.update(str(product_id) for product_id in referencing_product_ids(session, obj))

    def after_commit(self, session):
        pending = session.info.pop(PENDING_KEY, None)
        if not pending:
            return
        try:
            SearchSyncService(self.app).index_many(sorted(pending))
        except Exception as exc:
            self.app.logger.warning("Scheduling search sync after commit failed: %s", exc)

    def after_rollback(self, session):
        session.info.pop(PENDING_KEY, None)
