from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from app.config import settings

DATABASE_URL = settings.database_url_normalized

connect_args = {}
pool_config = {'pool_pre_ping': True}
if DATABASE_URL.startswith('sqlite'):
    connect_args = {'check_same_thread': False}
else:
    pool_config.update({'pool_size': 10, 'max_overflow': 20, 'pool_recycle': 3600})

engine = create_engine(DATABASE_URL, connect_args=connect_args, echo=settings.database_echo, **pool_config)

if DATABASE_URL.startswith('sqlite'):

    @event.listens_for(engine, 'connect')
    def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
