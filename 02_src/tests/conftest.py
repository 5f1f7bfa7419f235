"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

TEAM_ID = "team-1"
OTHER_TEAM_ID = "team-2"


@pytest.fixture
def settings(tmp_path):
    """Settings with a per-test scratch directory."""
    from chatcore.config import ChatSettings

    return ChatSettings(preview_scratch_dir=str(tmp_path / "scratch"))


@pytest_asyncio.fixture
async def backend():
    """Create in-memory backend with two seeded teams."""
    from chatcore.backend import LocalBackend

    be = LocalBackend(":memory:")
    await be.init()
    await be.create_team(TEAM_ID, "North Region", ["alice", "bob", "dave"])
    await be.create_team(OTHER_TEAM_ID, "South Region", ["carol"])
    yield be
    await be.close()


def _signed_in(backend, user_id: str):
    client = backend.client()
    client.sign_in(user_id)
    return client


@pytest.fixture
def alice_backend(backend):
    """Backend client signed in as alice."""
    return _signed_in(backend, "alice")


@pytest.fixture
def bob_backend(backend):
    """Backend client signed in as bob."""
    return _signed_in(backend, "bob")


@pytest.fixture
def carol_backend(backend):
    """Backend client signed in as carol (other team)."""
    return _signed_in(backend, "carol")


@pytest.fixture
def resolver(alice_backend, settings):
    """Attachment resolver for alice."""
    from chatcore.attachments import AttachmentResolver

    return AttachmentResolver(alice_backend, settings)


@pytest.fixture
def repository(alice_backend, resolver):
    """Message repository for alice."""
    from chatcore.repository import MessageRepository

    return MessageRepository(alice_backend, resolver)


@pytest.fixture
def bob_repository(bob_backend, settings):
    """Message repository for bob."""
    from chatcore.attachments import AttachmentResolver
    from chatcore.repository import MessageRepository

    return MessageRepository(bob_backend, AttachmentResolver(bob_backend, settings))


@pytest.fixture
def channels(alice_backend):
    """Realtime channel manager for alice."""
    from chatcore.realtime import RealtimeChannelManager

    return RealtimeChannelManager(alice_backend.feed)


@pytest.fixture
def recorded_sleep():
    """Sleep replacement that records requested delays."""
    delays: list[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    sleep.delays = delays
    return sleep
