import os

from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, selectinload, sessionmaker

from models import (
    AttributeValue,
    Base,
    Category,
    Product,
    ProductImage,
    ProductSelectionGroup,
    ProductSelectionOption,
    ProductVariant,
    product_store_categories,
)


DATABASE_URL = os.environ.get("CATALOG_DATABASE_URL", "sqlite:///catalog.db")


def _create_engine(url):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = _create_engine(DATABASE_URL)
SessionLocal = scoped_session(sessionmaker(bind=engine))


def bind_engine(url):
    """Point the session registry at another database."""
    global engine
    SessionLocal.remove()
    engine.dispose()
    engine = _create_engine(url)
    SessionLocal.configure(bind=engine)
    return engine


def new_session():
    """A session outside the scoped registry, for work that must not share the caller's transaction."""
    return SessionLocal.session_factory()


def init_db():
    Base.metadata.create_all(bind=engine)


def _product_query(session):
    return session.query(Product).options(
        selectinload(Product.category).selectinload(Category.parent),
        selectinload(Product.brand),
        selectinload(Product.store),
        selectinload(Product.store_categories),
        selectinload(Product.selection_groups)
        .selectinload(ProductSelectionGroup.options)
        .selectinload(ProductSelectionOption.variants),
    )


def get_product(session, product_id):
    if not product_id:
        return None
    return _product_query(session).filter(Product.id == str(product_id)).first()


def get_products(session, product_ids, chunk_size=900):
    ids = [str(product_id) for product_id in product_ids if product_id]
    products = []
    for idx in range(0, len(ids), chunk_size):
        chunk = ids[idx : idx + chunk_size]
        products.extend(_product_query(session).filter(Product.id.in_(chunk)).all())
    return products


def iter_product_pages(session, batch_size):
    """Yield pages of live products, keyed on id so inserts do not shift pages."""
    last_id = None
    while True:
        query = _product_query(session).filter(Product.is_deleted.is_(False))
        if last_id is not None:
            query = query.filter(Product.id > last_id)
        batch = query.order_by(Product.id).limit(batch_size).all()
        if not batch:
            break
        yield batch
        last_id = batch[-1].id


def count_products(session):
    return session.query(Product.id).filter(Product.is_deleted.is_(False)).count()


def products_modified_since(session, since):
    return [
        row.id
        for row in session.query(Product.id).filter(Product.updated_at >= since).all()
    ]


def product_ids_referencing(session, brand_ids=(), store_ids=(), category_ids=()):
    """Ids of products whose documents carry a label of one of the given rows."""
    ids = set()
    if brand_ids:
        ids.update(row.id for row in session.query(Product.id).filter(Product.brand_id.in_(brand_ids)))
    if store_ids:
        ids.update(row.id for row in session.query(Product.id).filter(Product.store_id.in_(store_ids)))
    if category_ids:
        ids.update(
            row.id for row in session.query(Product.id).filter(Product.category_id.in_(category_ids))
        )
        links = product_store_categories.c
        ids.update(
            row.product_id
            for row in session.query(links.product_id).filter(links.category_id.in_(category_ids))
        )
    return ids


def first_image(session, product_id):
    return (
        session.query(ProductImage)
        .filter(ProductImage.product_id == product_id)
        .order_by(ProductImage.display_order, ProductImage.id)
        .first()
    )


def variants_for_product(session, product_id):
    return (
        session.query(ProductVariant)
        .options(
            selectinload(ProductVariant.attribute_values).selectinload(
                AttributeValue.attribute
            ),
            selectinload(ProductVariant.inventory_stock),
        )
        .filter(ProductVariant.product_id == product_id)
        .order_by(ProductVariant.sku, ProductVariant.id)
        .all()
    )