import os
import sys

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
os.environ['FLASK_ENV'] = 'testing'

from fakes import FakeBucket, FakeFirestore, InlineExecutor  # noqa: E402
from content_store import ContentRepository  # noqa: E402

ADMIN_EMAIL = 'admin@examstar.test'
TOKENS = {
    'admin-token': {'uid': 'admin-uid', 'email': ADMIN_EMAIL},
    'student-token': {'uid': 'student-uid', 'email': 'student@example.com'},
}


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def bucket():
    return FakeBucket()


@pytest.fixture
def repo(db, bucket):
    return ContentRepository(db, bucket=bucket)


@pytest.fixture
def app(repo, monkeypatch):
    """Flask app wired to the in-memory Firestore"""
    import app as flask_app
    import firebase_config

    def verify_id_token(token):
        if token not in TOKENS:
            raise ValueError('Invalid ID token')
        return TOKENS[token]

    monkeypatch.setattr(firebase_config, 'verify_id_token', verify_id_token)
    application = flask_app.app
    application.config['TESTING'] = True
    application.config['ADMIN_EMAIL'] = ADMIN_EMAIL
    application.config['CACHE_DIR'] = None
    application.config['CACHE_MAX_ENTRIES'] = 0
    old_feed = application.extensions.pop('home_feed', None)
    if old_feed is not None:
        old_feed.dispose()
    application.extensions.pop('cache_manager', None)
    application.extensions['content_repository'] = repo
    application.extensions['home_feed_executor'] = InlineExecutor()
    yield application
    feed = application.extensions.pop('home_feed', None)
    if feed is not None:
        feed.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {'Authorization': 'Bearer admin-token'}


@pytest.fixture
def student_headers():
    return {'Authorization': 'Bearer student-token'}
