import pytest

from possync.db import create_engine_for, init_db
from possync.store.data_store import OfflineDataStore
from possync.store.notifier import ChangeNotifier

from fakes import ManualClock


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'pos.db'}"


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def open_store(db_url, clock):
    """
    Returns an async factory; call it inside the test's event loop so the
    engine binds to that loop. Caller disposes the engine.
    """
    async def _open():
        engine, sessionmaker = create_engine_for(db_url)
        await init_db(engine)
        return engine, OfflineDataStore(sessionmaker, ChangeNotifier(), clock=clock)
    return _open
