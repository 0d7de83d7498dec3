import os, sys, pytest
# Ensure backend directory is on path so 'staffauth' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from staffauth import create_app, get_db
from staffauth.models.identity import Base
from staffauth.services.permissions import permission_cache
# Import all model modules to ensure tables are registered before create_all
import staffauth.models.session  # noqa: F401
import staffauth.models.audit  # noqa: F401
import staffauth.models.resources  # noqa: F401

TEST_CONFIG = {
    'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
    'JWT_SECRET_KEY': 'test-secret-key-with-enough-bytes-for-hs256',
    'AUDIT_FAIL_CLOSED': False,
    'LOG_LEVEL': 'DEBUG',
}


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    app = create_app(dict(TEST_CONFIG))
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture(autouse=True)
def clean_db(app_instance):
    """Each test starts with empty tables and a cold permission cache."""
    with app_instance.app_context():
        yield
        session = get_db()
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
        session.expunge_all()
    permission_cache.clear()
    app_instance.config['AUDIT_FAIL_CLOSED'] = False


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def file_db(tmp_path, monkeypatch):
    """Point get_db() at a file-backed SQLite database for multi-threaded tests.

    The shared in-memory database hands every thread the same connection, so
    it cannot show races between separate transactions.
    """
    import staffauth
    from sqlalchemy import create_engine
    from sqlalchemy.orm import scoped_session, sessionmaker

    engine = create_engine(f"sqlite:///{tmp_path / 'staffauth.db'}", future=True,
                           connect_args={'check_same_thread': False, 'timeout': 30})
    Base.metadata.create_all(engine)
    factory = scoped_session(sessionmaker(bind=engine, expire_on_commit=False, autoflush=False))
    monkeypatch.setattr(staffauth, 'SessionLocal', factory)
    yield factory
    factory.remove()
    engine.dispose()
