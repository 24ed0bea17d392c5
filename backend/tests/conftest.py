import os, sys, pytest
# Ensure the backend directory is on path so 'repairshop' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from repairshop import create_app, get_db
from repairshop.models.authz import Base, Permission  # ensure Permission model referenced
# Import all model modules to ensure tables are registered before create_all
import repairshop.models.customer  # noqa: F401
import repairshop.models.catalog  # noqa: F401
import repairshop.models.appointment  # noqa: F401
import repairshop.models.repair_ticket  # noqa: F401
import repairshop.models.time_entry  # noqa: F401
import repairshop.models.api_key  # noqa: F401
import repairshop.models.audit  # noqa: F401
import repairshop.models.email_log  # noqa: F401
from repairshop.services.rate_limiter import RATE_LIMIT_STORE

@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    os.environ['EMAIL_ENABLED'] = 'false'
    app = create_app()
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app

@pytest.fixture(autouse=True)
def _fresh_rate_limits():
    # Counters are process-wide; keep tests independent of each other
    RATE_LIMIT_STORE.reset()
    yield
    RATE_LIMIT_STORE.reset()

@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()

@pytest.fixture()
def make_headers(app_instance):
    """Bearer headers for a user id + explicit permission claims (bypasses /auth/login)."""
    from tests.test_lifecycle_helpers import jwt_headers

    def _make(user_id, perms):
        with app_instance.app_context():
            return jwt_headers(user_id, perms)
    return _make
