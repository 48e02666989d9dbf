"""
Pytest configuration and fixtures for server tests.
"""
import aiosmtplib

import pytest

from alia.security.encryption import FieldEncryptionService
from alia.storage import MemoryStore

MASTER_KEY = "test-master-key-that-is-at-least-32-characters"


class FakeTransport:
    """Collects outgoing messages instead of talking to an SMTP server."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send(self, message):
        if self.fail:
            raise aiosmtplib.SMTPServerDisconnected("connection lost")
        self.sent.append(message)


@pytest.fixture
def service():
    return FieldEncryptionService(MASTER_KEY)


@pytest.fixture
def profile_table():
    return MemoryStore("user_profiles", key="userId")


@pytest.fixture
def fake_transport():
    return FakeTransport()
