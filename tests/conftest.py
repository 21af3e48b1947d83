"""Shared fixtures: an in-memory store, the engine, and a small cast of users."""

import pytest

from bloodnet.app import create_app
from bloodnet.config import TestingConfig
from bloodnet.engine import BloodNet
from bloodnet.store import MemoryStore
from bloodnet.users import register_user


class RecordingMailer:
    """Collects outgoing mail instead of talking to SMTP."""

    def __init__(self):
        self.sent = []

    def send_mail(self, to, subject, text, html=None):
        self.sent.append({'to': to, 'subject': subject, 'text': text})
        return True


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def net(store, mailer):
    return BloodNet(store, mailer=mailer)


@pytest.fixture
def people(store):
    """One user per role, keyed by a short nickname."""
    return {
        'donor': register_user(store, {
            'email': 'dana@example.com', 'role': 'Donor', 'name': 'Dana',
            'bloodType': 'O-', 'mobileNumber': '555-0101',
        }),
        'requester': register_user(store, {
            'email': 'quinn@example.com', 'role': 'Individual', 'name': 'Quinn',
            'bloodType': 'A+', 'mobileNumber': '555-0102',
        }),
        'hospital': register_user(store, {
            'email': 'ward@cityhospital.org', 'role': 'Hospital', 'name': 'City Hospital',
        }),
        'bank': register_user(store, {
            'email': 'stock@centralbank.org', 'role': 'Blood Bank', 'name': 'Central Blood Bank',
        }),
        'other_bank': register_user(store, {
            'email': 'stock@northbank.org', 'role': 'Blood Bank', 'name': 'North Blood Bank',
        }),
    }


@pytest.fixture
def app(store):
    return create_app(TestingConfig, store=store)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login_as(client):
    """Stand-in for the auth layer: put an email in the session."""
    def _login(email):
        with client.session_transaction() as sess:
            sess['email'] = email
    return _login
