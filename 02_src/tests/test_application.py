"""Tests for Application, ChatClient and the HTTP API."""

import httpx
import pytest
import pytest_asyncio

from chatcore.api import create_fastapi_app
from chatcore.app import Application
from chatcore.backend import SUBMISSION_MESSAGES, SUBMISSIONS
from chatcore.errors import ValidationFailure
from chatcore.models import DirectConversationRef, SubmissionThreadRef, TeamChatRef


@pytest_asyncio.fixture
async def application(settings):
    """Started in-memory application with one seeded team."""
    app = Application(db_path=":memory:", settings=settings)
    await app.start()
    await app.backend.create_team("team-1", "North Region", ["alice", "bob"])
    yield app
    await app.stop()


@pytest_asyncio.fixture
async def api(application):
    """HTTP client bound to the FastAPI app."""
    fastapi_app = create_fastapi_app(application)
    transport = httpx.ASGITransport(app=fastapi_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


class TestApplicationStart:
    """Tests for Application.start()."""

    @pytest.mark.asyncio
    async def test_start_initializes_components(self, settings):
        """Test that start initializes the backend and preview service."""
        app = Application(db_path=":memory:", settings=settings)
        await app.start()

        assert app.backend is not None
        assert app.preview_service is not None

        await app.stop()

    @pytest.mark.asyncio
    async def test_properties_raise_when_not_started(self, settings):
        """Test that properties raise before start."""
        app = Application(db_path=":memory:", settings=settings)

        with pytest.raises(RuntimeError, match="Application not started"):
            _ = app.backend
        with pytest.raises(RuntimeError, match="Application not started"):
            _ = app.preview_service


class TestChatClient:
    """Tests for client sessions."""

    @pytest.mark.asyncio
    async def test_connect_and_exchange_messages(self, application):
        """Test two sessions see each other's messages live."""
        alice = await application.connect("alice")
        bob = await application.connect("bob")
        alice_view = await alice.open_conversation(TeamChatRef("team-1"))
        bob_view = await bob.open_conversation(TeamChatRef("team-1"))

        stored = await alice.controller(TeamChatRef("team-1")).send("Morning all")

        assert [m.id for m in alice_view.messages] == [stored.id]
        assert [m.id for m in bob_view.messages] == [stored.id]

    @pytest.mark.asyncio
    async def test_reopen_closes_previous_view(self, application):
        """Test that opening a conversation twice replaces the controller."""
        alice = await application.connect("alice")
        first = await alice.open_conversation(TeamChatRef("team-1"))
        second = await alice.open_conversation(TeamChatRef("team-1"))

        assert first.closed is True
        assert second.live is True
        assert len(alice.channels.registry) == 1

    @pytest.mark.asyncio
    async def test_failed_open_is_not_kept(self, application):
        """Test that a rejected conversation leaves nothing behind."""
        alice = await application.connect("alice")
        ref = DirectConversationRef("team-1", "bob", "alice")

        with pytest.raises(ValidationFailure):
            await alice.open_conversation(ref)

        assert alice.controller(ref) is None
        assert len(alice.channels.registry) == 0

    @pytest.mark.asyncio
    async def test_connect_watches_member_teams(self, application):
        """Test that priority alerts arrive without watching by hand."""
        await application.backend.create_team("team-2", "South Region", ["carol"])
        alerts = []

        async def notify(alert):
            alerts.append(alert.submission_id)

        alice = await application.connect("alice", notify=notify)
        carol = application.backend.client()
        carol.sign_in("carol")
        bob = application.backend.client()
        bob.sign_in("bob")

        await carol.insert(
            SUBMISSIONS, {"id": "s9", "team_id": "team-2", "created_by": "carol", "priority_level": 1}
        )
        await bob.insert(
            SUBMISSIONS, {"id": "s1", "team_id": "team-1", "created_by": "bob", "priority_level": 1}
        )

        assert alice.priority.teams == ["team-1"]
        assert alerts == ["s1"]

    @pytest.mark.asyncio
    async def test_disconnect_releases_channels(self, application):
        """Test that disconnect closes every subscription."""
        alice = await application.connect("alice")
        await alice.open_conversation(TeamChatRef("team-1"))
        await alice.open_conversation(SubmissionThreadRef("team-1", "s1"))
        alice.priority.watch("team-1")

        await application.disconnect(alice)

        assert application.backend.feed.subscriber_count() == 0


class TestDocumentPreviewRoute:
    """Tests for POST /functions/v1/document-preview."""

    @pytest.mark.asyncio
    async def test_renders_csv(self, application, api):
        """Test the end-to-end html preview."""
        session = application.backend.client()
        token = session.sign_in("alice")
        await session.upload("submission-csvs", "team-1/a.csv", b"store,cases\nNorth,4\n")
        await session.insert(
            SUBMISSION_MESSAGES,
            {
                "id": "m1",
                "team_id": "team-1",
                "sender_id": "alice",
                "body": "counts",
                "is_internal": True,
                "attachment_path": "team-1/a.csv",
                "attachment_type": "csv",
            },
        )

        response = await api.post(
            "/functions/v1/document-preview",
            json={"kind": "submission_message", "id": "m1", "max_rows": "abc"},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["mode"] == "html"
        assert "North" in data["html"]
        assert data["meta"]["max_rows"] == 5

    @pytest.mark.asyncio
    async def test_missing_token(self, api):
        """Test that requests without a bearer token are 401."""
        response = await api.post("/functions/v1/document-preview", json={})

        assert response.status_code == 401
        assert response.json() == {"error": "missing_bearer_token"}

    @pytest.mark.asyncio
    async def test_message_not_found(self, application, api):
        """Test that lookup failures answer 500 with the error code."""
        token = application.backend.client().sign_in("alice")

        response = await api.post(
            "/functions/v1/document-preview",
            json={"kind": "direct_message", "id": "missing"},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 500
        assert response.json() == {"error": "message_not_found"}


class TestStorageRoutes:
    """Tests for signed downloads and health."""

    @pytest.mark.asyncio
    async def test_signed_download(self, application, api):
        """Test that a signed URL serves the object bytes."""
        session = application.backend.client()
        session.sign_in("alice")
        await session.upload("chat", "teams/team-1/a b.txt", b"hello", "text/plain")
        url = await session.create_signed_url("chat", "teams/team-1/a b.txt", 60)

        response = await api.get(url.replace(application.settings.backend_url, ""))

        assert response.status_code == 200
        assert response.content == b"hello"
        assert response.headers["content-type"].startswith("text/plain")

    @pytest.mark.asyncio
    async def test_bad_signature(self, api):
        """Test that an unknown token is rejected."""
        response = await api.get("/storage/v1/object/sign/chat/x.txt", params={"token": "nope"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_health(self, api):
        """Test health check."""
        response = await api.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
