import pytest
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from entity_mapper.storages.sqlalchemy import SqlAlchemyAdapter


@pytest.fixture()
def sa_adapter(sqlalchemy_url: str) -> SqlAlchemyAdapter:
    url = make_url(sqlalchemy_url)
    if url.get_backend_name() != "sqlite":
        return SqlAlchemyAdapter(create_async_engine(url))

    # a single pooled connection keeps the in-memory database alive; SAVEPOINT needs BEGIN emitted by SQLAlchemy
    engine = create_async_engine(url, poolclass=StaticPool)

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(connection):
        connection.exec_driver_sql("BEGIN")

    return SqlAlchemyAdapter(engine)
