"""
Test Configuration and Fixtures
"""
import pytest

from studyflow import create_app, db
from studyflow.models import SubscriptionStatus, SubscriptionTier, User


class FakeChat:
    """Stands in for the OpenAI chat client; replies are served in order."""

    model = "fake-model"

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def complete(self, system, user, temperature=0.7, max_tokens=2000):
        self.calls.append({"system": system, "user": user, "temperature": temperature})
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply


class RecordingRemote:
    """Remote extraction client that records calls and returns a canned result."""

    def __init__(self, result="", error=None):
        self.result = result
        self.error = error
        self.calls = []

    def extract(self, ref):
        self.calls.append(ref)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application for testing"""
    app = create_app('testing', overrides={
        'GUEST_STORE_PATH': str(tmp_path / 'guest.sqlite'),
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
        'SECRET_KEY': 'test-secret-key',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture(scope='function')
def test_user(app):
    """Create test user"""
    user = User(
        email='test@example.com',
        first_name='Test',
        last_name='User',
        subscription_status=SubscriptionStatus.TRIAL,
        subscription_tier=SubscriptionTier.FREE,
    )
    user.set_password('testpassword123')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def authenticated_client(client, test_user):
    """Create authenticated test client"""
    response = client.post('/login', json={
        'email': 'test@example.com',
        'password': 'testpassword123',
    })
    assert response.status_code == 200
    return client


@pytest.fixture
def fake_chat(monkeypatch):
    """Patch every route-level chat client factory with one FakeChat."""
    chat = FakeChat()
    monkeypatch.setattr('studyflow.api.get_chat_client', lambda *a, **k: chat)
    monkeypatch.setattr('studyflow.notes.get_chat_client', lambda *a, **k: chat)
    return chat


@pytest.fixture
def pdf_bytes():
    """Build a small PDF with a real text layer."""
    import fitz

    def make(*lines):
        doc = fitz.open()
        page = doc.new_page()
        y = 72
        for line in lines:
            page.insert_text((72, y), line)
            y += 20
        data = doc.tobytes()
        doc.close()
        return data

    return make
