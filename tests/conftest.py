"""
Pytest configuration file for the MindCare test suite.

This file defines shared fixtures used across the test modules. Every test gets its
own encrypted store in a temporary directory, keyed with a freshly generated Fernet
key, so tests never touch `records.json` or `secret.key` in the working directory.
"""
import datetime

import pytest
from cryptography.fernet import Fernet

from mindcare import config
from mindcare.service import HospitalService
from mindcare.store import DocumentStore

PASSWORD = "password123"


@pytest.fixture(autouse=True)
def no_secrets(monkeypatch):
    """Keeps tests independent of any local `.streamlit/secrets.toml`."""
    monkeypatch.setattr(config, "get_secret", lambda name, default=None: default)


@pytest.fixture
def encryptor():
    """Provides a Fernet instance with a throwaway key."""
    return Fernet(Fernet.generate_key())


@pytest.fixture
def data_file(tmp_path):
    return str(tmp_path / "records.json")


@pytest.fixture
def store(data_file, encryptor):
    return DocumentStore(data_file, encryptor=encryptor)


@pytest.fixture
def service(store):
    """Provides a HospitalService over an isolated, empty store."""
    return HospitalService(store=store)


def _sign_up(service, email, name, role):
    return service.auth.sign_up(email, PASSWORD, name, role)


@pytest.fixture
def patient_user(service):
    return _sign_up(service, "pat@example.com", "Pat Patient", "patient")


@pytest.fixture
def doctor_user(service):
    return _sign_up(service, "doc@example.com", "Dr. Strange", "doctor")


@pytest.fixture
def admin_user(service):
    return _sign_up(service, "admin@example.com", "Ada Admin", "admin")


@pytest.fixture
def manager_user(service):
    return _sign_up(service, "gm@example.com", "Gina Manager", "generalmanager")


@pytest.fixture
def future_date():
    """A slot date safely in the future, as "YYYY-MM-DD"."""
    return (datetime.date.today() + datetime.timedelta(days=30)).isoformat()
