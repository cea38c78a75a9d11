import pytest

import database
from catalog_search import create_app
from catalog_search.services import search_index
from fakes import FakeElasticsearch, InlineExecutor, fake_bulk


TEST_CONFIG = {
    "TESTING": True,
    "ELASTICSEARCH_ENABLED": True,
    "ELASTICSEARCH_INDEX": "products-test",
    "ELASTICSEARCH_AUTO_INDEX": False,
    "ELASTICSEARCH_BATCH_SIZE": 2,
    "SEARCH_INCREMENTAL_SYNC_ENABLED": False,
    "SEARCH_SYNC_ON_WRITE": False,
}


@pytest.fixture
def es():
    return FakeElasticsearch()


@pytest.fixture
def app(tmp_path, es, monkeypatch):
    monkeypatch.setattr(search_index.helpers, "bulk", fake_bulk)
    database.bind_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    app = create_app(dict(TEST_CONFIG))
    app.extensions["elasticsearch"] = es
    app.extensions["search_executor"].shutdown(wait=False)
    app.extensions["search_executor"] = InlineExecutor()
    with app.app_context():
        yield app
    app.extensions["search_write_hooks"].unregister()
    database.SessionLocal.remove()
    database.engine.dispose()


@pytest.fixture
def session(app):
    session = database.new_session()
    yield session
    session.close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def index_docs(app, es):
    def _docs():
        return es.documents(app.config["ELASTICSEARCH_INDEX"])

    return _docs
