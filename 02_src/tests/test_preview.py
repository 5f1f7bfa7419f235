"""Tests for document previews."""

import io
import json
from pathlib import Path

import httpx
import pytest
from openpyxl import Workbook

from chatcore.backend import SUBMISSION_MESSAGES
from chatcore.errors import (
    NetworkFailure,
    NotAuthenticated,
    PreviewUnavailable,
    ResourceTooLarge,
    RetryExhausted,
)
from chatcore.models import AttachmentMeta, MessagePreviewRef, TeamMessage
from chatcore.preview import (
    AttachmentPreviewer,
    DocumentPreviewBuilder,
    PreviewRenderService,
    PreviewRequestError,
    RemoteDocumentPreviewClient,
    bounded_grid,
    clamp,
    coerce_response,
    csv_grid,
    preview_ref_for,
    render_table,
)
from chatcore.retry import RetryPolicy

FILE_URL = "https://files.example.com/report.csv"
REF = MessagePreviewRef(kind="submission_message", id="m1")


def serve(content: bytes, status: int = 200) -> httpx.AsyncClient:
    """HTTP client answering every request with the given bytes."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=content)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def xlsx_bytes(rows, title="Counts") -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


async def token_provider():
    return "token-abc"


class TestTables:
    """Tests for bounded grids and HTML rendering."""

    def test_bounded_grid_skips_blank_rows(self):
        """Test that blank rows are dropped and columns capped."""
        grid = bounded_grid([["a", "b", "c"], ["", " "], [1.0, None, True]], 10, 2)

        assert grid == [["a", "b"], ["1", ""]]

    def test_bounded_grid_stops_early(self):
        """Test that reading stops one row past the bound."""
        consumed = []

        def rows():
            for i in range(1000):
                consumed.append(i)
                yield [str(i)]

        grid = bounded_grid(rows(), 5, 3)

        assert len(grid) == 7
        assert len(consumed) == 7

    def test_render_escapes_cells(self):
        """Test that markup in cells and title is escaped."""
        html = render_table("<b>t</b>", [["h"], ["<script>alert(1)</script>"]], 60, 20)

        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "&lt;b&gt;t&lt;/b&gt;" in html

    def test_render_truncates_to_max_rows(self):
        """Test 61 data rows render as 60 with a truncation notice."""
        data = "name,qty\n" + "".join(f"item{i},{i}\n" for i in range(61))
        grid = csv_grid(data.encode(), 60, 20)

        html = render_table("stock.csv", grid, 60, 20)

        assert html.count("<tr><td>") == 60
        assert "item59" in html
        assert "item60" not in html
        assert "Showing the first 60 rows" in html
        assert "Preview limited to 60 rows × 20 columns." in html

    def test_render_without_truncation(self):
        """Test that short tables carry no notice."""
        html = render_table("t", [["h"], ["v"]], 60, 20)

        assert "truncated" not in html
        assert html.count("<th>") == 1

    def test_csv_bom_and_quotes(self):
        """Test BOM stripping and quoted commas."""
        grid = csv_grid(b"\xef\xbb\xbfa,b\n\"x, y\",2\n", 60, 20)

        assert grid == [["a", "b"], ["x, y", "2"]]


class TestDocumentPreviewBuilder:
    """Tests for local previews."""

    async def test_csv_preview(self, settings):
        """Test a CSV is downloaded and rendered."""
        builder = DocumentPreviewBuilder(settings, client=serve(b"sku,qty\nA1,3\n"))

        result = await builder.build(AttachmentMeta(FILE_URL, "csv", "report.csv"))

        assert result.mode == "html"
        assert result.title == "report.csv"
        assert "A1" in result.html
        assert result.url == FILE_URL
        assert Path(result.local_path).exists()

    async def test_excel_preview(self, settings):
        """Test the first sheet of a workbook is rendered."""
        data = xlsx_bytes([["Store", "Cases"], ["North 12", 40], ["South 3", 7.0]])
        builder = DocumentPreviewBuilder(settings, client=serve(data))

        result = await builder.build(AttachmentMeta(FILE_URL, "excel", "inventory.xlsx"))

        assert result.title == "inventory.xlsx - Counts"
        assert "North 12" in result.html
        assert ">7<" in result.html

    async def test_exact_size_limit_accepted(self, settings):
        """Test that a file of exactly the limit is previewed."""
        data = b"a,b\n" * 750_000
        assert len(data) == 3_000_000
        builder = DocumentPreviewBuilder(settings, client=serve(data))

        result = await builder.build(AttachmentMeta(FILE_URL, "csv", "big.csv"))

        assert result.mode == "html"

    async def test_over_size_limit_rejected(self, settings):
        """Test that one byte over the limit fails and leaves no scratch file."""
        data = b"a,b\n" * 750_000 + b"x"
        builder = DocumentPreviewBuilder(settings, client=serve(data))

        with pytest.raises(ResourceTooLarge) as exc_info:
            await builder.build(AttachmentMeta(FILE_URL, "csv", "big.csv"))

        assert "too large to preview" in str(exc_info.value)
        assert exc_info.value.size == 3_000_001
        assert list(Path(settings.preview_scratch_dir).iterdir()) == []

    async def test_unsupported_kind(self, settings):
        """Test that only tabular kinds have a local builder."""
        builder = DocumentPreviewBuilder(settings, client=serve(b""))

        with pytest.raises(PreviewUnavailable):
            await builder.build(AttachmentMeta(FILE_URL, "pdf", "a.pdf"))

    async def test_http_error_status(self, settings):
        """Test that a failed download is PreviewUnavailable."""
        builder = DocumentPreviewBuilder(settings, client=serve(b"gone", status=404))

        with pytest.raises(PreviewUnavailable):
            await builder.build(AttachmentMeta(FILE_URL, "csv", "a.csv"))

    async def test_transport_error(self, settings):
        """Test that connection failures are NetworkFailure."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        builder = DocumentPreviewBuilder(settings, client=client)

        with pytest.raises(NetworkFailure):
            await builder.build(AttachmentMeta(FILE_URL, "csv", "a.csv"))
        assert list(Path(settings.preview_scratch_dir).iterdir()) == []

    async def test_malformed_content_length(self, settings):
        """Test that an unparseable Content-Length is PreviewUnavailable."""

        def handler(request):
            return httpx.Response(200, headers={"content-length": "lots"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        builder = DocumentPreviewBuilder(settings, client=client)

        with pytest.raises(PreviewUnavailable, match="Content-Length"):
            await builder.build(AttachmentMeta(FILE_URL, "csv", "a.csv"))
        assert list(Path(settings.preview_scratch_dir).iterdir()) == []

    async def test_broken_workbook(self, settings):
        """Test that unreadable spreadsheets are PreviewUnavailable."""
        builder = DocumentPreviewBuilder(settings, client=serve(b"not a zip"))

        with pytest.raises(PreviewUnavailable):
            await builder.build(AttachmentMeta(FILE_URL, "excel", "a.xlsx"))
        assert list(Path(settings.preview_scratch_dir).iterdir()) == []


class TestCoerceResponse:
    """Tests for endpoint response normalization."""

    def test_html_response(self):
        """Test current html responses."""
        result = coerce_response({"ok": True, "mode": "html", "html": "<p/>", "title": "T"})

        assert result.mode == "html"
        assert result.html == "<p/>"

    def test_legacy_response_without_mode(self):
        """Test that {ok, html} without a mode is html."""
        result = coerce_response({"ok": True, "html": "<p/>"})

        assert result.mode == "html"
        assert result.title == "Preview"

    def test_url_response(self):
        """Test url responses with either embed key spelling."""
        result = coerce_response(
            {"ok": True, "mode": "url", "url": "https://s/x.docx", "officeEmbedUrl": "https://o"}
        )

        assert result.mode == "url"
        assert result.office_embed_url == "https://o"

    def test_failures(self):
        """Test ok:false and malformed payloads."""
        with pytest.raises(PreviewUnavailable, match="forbidden"):
            coerce_response({"ok": False, "error": "forbidden"})
        with pytest.raises(PreviewUnavailable):
            coerce_response({"ok": True, "mode": "url"})
        with pytest.raises(PreviewUnavailable):
            coerce_response(["ok"])


class TestRemoteDocumentPreviewClient:
    """Tests for the retrying endpoint client."""

    def _client(self, handler, recorded_sleep, token=token_provider):
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return RemoteDocumentPreviewClient(
            "http://backend.test/",
            token,
            policy=RetryPolicy(sleep=recorded_sleep),
            client=http,
        )

    async def test_success_posts_identity_and_bounds(self, recorded_sleep):
        """Test the request payload and bearer header."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True, "mode": "html", "html": "<t/>"})

        client = self._client(handler, recorded_sleep)
        result = await client.fetch(REF)

        assert result.html == "<t/>"
        request = seen[0]
        assert str(request.url) == "http://backend.test/functions/v1/document-preview"
        assert request.headers["authorization"] == "Bearer token-abc"
        assert json.loads(request.content) == {
            "kind": "submission_message",
            "id": "m1",
            "max_rows": 60,
            "max_cols": 20,
        }
        assert recorded_sleep.delays == []

    async def test_gateway_errors_exhaust_retries(self, recorded_sleep):
        """Test three 503s give RetryExhausted after backoff of 0.5s then 1.0s."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, json={"error": "boot"})

        client = self._client(handler, recorded_sleep)

        with pytest.raises(RetryExhausted) as exc_info:
            await client.fetch(REF)

        assert len(calls) == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_status == 503
        assert recorded_sleep.delays == [0.5, 1.0]
        assert sum(recorded_sleep.delays) >= 1.5

    async def test_recovers_after_gateway_error(self, recorded_sleep):
        """Test a 502 followed by success."""
        responses = [
            httpx.Response(502),
            httpx.Response(200, json={"ok": True, "mode": "url", "url": "https://s/a.pdf"}),
        ]

        def handler(request):
            return responses.pop(0)

        result = await self._client(handler, recorded_sleep).fetch(REF)

        assert result.mode == "url"
        assert recorded_sleep.delays == [0.5]

    async def test_transport_errors_are_retried(self, recorded_sleep):
        """Test that connection failures count as attempts."""
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(RetryExhausted) as exc_info:
            await self._client(handler, recorded_sleep).fetch(REF)

        assert len(calls) == 3
        assert exc_info.value.last_status is None

    async def test_unauthorized_is_terminal(self, recorded_sleep):
        """Test that a 401 is not retried."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={"error": "unauthorized"})

        with pytest.raises(NotAuthenticated) as exc_info:
            await self._client(handler, recorded_sleep).fetch(REF)

        assert len(calls) == 1
        assert "unauthorized" in str(exc_info.value)

    async def test_other_errors_are_terminal(self, recorded_sleep):
        """Test that a 500 answer is PreviewUnavailable without retry."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"error": "message_not_found"})

        with pytest.raises(PreviewUnavailable, match="message_not_found"):
            await self._client(handler, recorded_sleep).fetch(REF)
        assert len(calls) == 1

    async def test_requires_token(self, recorded_sleep):
        """Test that no session fails before any request."""

        async def no_token():
            return None

        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(NotAuthenticated, match="You must be signed in."):
            await self._client(handler, recorded_sleep, token=no_token).fetch(REF)

    async def test_offline_token_lookup_is_network_failure(self, alice_backend, recorded_sleep):
        """Test that an unreachable session store fails as NetworkFailure."""
        alice_backend.offline = True

        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(NetworkFailure):
            await self._client(handler, recorded_sleep, token=alice_backend.get_access_token).fetch(REF)

    async def test_decoding_errors_are_retried(self, recorded_sleep):
        """Test that every httpx error counts as a failed attempt."""
        errors = [
            httpx.DecodingError("bad gzip"),
            httpx.TooManyRedirects("loop"),
        ]

        def handler(request):
            if errors:
                raise errors.pop(0)
            return httpx.Response(200, json={"ok": True, "mode": "html", "html": "<t/>"})

        result = await self._client(handler, recorded_sleep).fetch(REF)

        assert result.html == "<t/>"
        assert recorded_sleep.delays == [0.5, 1.0]


class TestAttachmentPreviewer:
    """Tests for preview routing."""

    async def test_pdf_opens_as_url(self, settings):
        """Test that non-tabular kinds without identity open by URL."""
        previewer = AttachmentPreviewer(DocumentPreviewBuilder(settings, client=serve(b"")))

        result = await previewer.preview(AttachmentMeta("https://s/a.pdf", "pdf", "a.pdf"))

        assert result.mode == "url"
        assert result.office_embed_url is None

    async def test_word_gets_office_embed(self, settings):
        """Test the office viewer for word documents."""
        previewer = AttachmentPreviewer(DocumentPreviewBuilder(settings, client=serve(b"")))

        result = await previewer.preview(AttachmentMeta("https://s/a.docx", "word", "a.docx"))

        assert result.office_embed_url.startswith("https://view.officeapps.live.com/")

    async def test_failure_becomes_download(self, settings):
        """Test that preview errors fall back to download."""
        previewer = AttachmentPreviewer(DocumentPreviewBuilder(settings, client=serve(b"", 404)))

        result = await previewer.preview(AttachmentMeta(FILE_URL, "csv", "a.csv"))

        assert result.mode == "download"
        assert result.url == FILE_URL
        assert "404" in result.error

    async def test_remote_used_with_identity(self, settings, recorded_sleep):
        """Test that persisted messages preview remotely."""

        def handler(request):
            return httpx.Response(200, json={"ok": True, "html": "<remote/>"})

        remote = RemoteDocumentPreviewClient(
            "http://backend.test",
            token_provider,
            policy=RetryPolicy(sleep=recorded_sleep),
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        previewer = AttachmentPreviewer(DocumentPreviewBuilder(settings, client=serve(b"")), remote)
        message = TeamMessage(
            id="m1",
            team_id="team-1",
            sender_id="alice",
            body="x",
            created_at=None,
            attachment_meta=AttachmentMeta(FILE_URL, "csv", "a.csv"),
        )

        result = await previewer.preview_message(message)

        assert result.html == "<remote/>"
        assert preview_ref_for(message) == REF

    async def test_unresolved_attachment(self, settings):
        """Test that a message without attachment meta offers nothing to preview."""
        previewer = AttachmentPreviewer(DocumentPreviewBuilder(settings, client=serve(b"")))
        message = TeamMessage(id="m1", team_id="team-1", sender_id="alice", body="x", created_at=None)

        result = await previewer.preview_message(message)

        assert result.mode == "download"
        assert result.error == "Attachment unavailable"

    async def test_offline_remote_preview_becomes_download(self, settings, alice_backend, recorded_sleep):
        """Test that an offline session degrades to download instead of raising."""
        remote = RemoteDocumentPreviewClient(
            "http://backend.test",
            alice_backend.get_access_token,
            policy=RetryPolicy(sleep=recorded_sleep),
            client=serve(b""),
        )
        previewer = AttachmentPreviewer(DocumentPreviewBuilder(settings, client=serve(b"")), remote)
        alice_backend.offline = True

        result = await previewer.preview(AttachmentMeta(FILE_URL, "csv", "a.csv"), REF)

        assert result.mode == "download"
        assert result.url == FILE_URL
        assert result.error == "Network request failed"


class TestPreviewRenderService:
    """Tests for server-side rendering."""

    @pytest.fixture
    def service(self, backend, settings):
        return PreviewRenderService(backend.admin(), settings)

    async def _message(self, alice_backend, path, attachment_type, message_id="m1"):
        await alice_backend.insert(
            SUBMISSION_MESSAGES,
            {
                "id": message_id,
                "team_id": "team-1",
                "sender_id": "alice",
                "body": "see attached",
                "is_internal": True,
                "attachment_path": path,
                "attachment_type": attachment_type,
            },
        )

    def test_clamp(self):
        """Test loose numeric clamping."""
        assert clamp("42", 5, 500) == 42
        assert clamp(1000, 5, 500) == 500
        assert clamp(1, 5, 500) == 5
        assert clamp("lots", 5, 500) == 5
        assert clamp(None, 5, 500) == 5
        assert clamp(float("nan"), 5, 500) == 5

    async def test_csv_by_message_identity(self, service, alice_backend):
        """Test a CSV from the legacy bucket is rendered as html."""
        await alice_backend.upload("submission-csvs", "team-1/counts.csv", b"sku,qty\n<A>,3\n")
        await self._message(alice_backend, "team-1/counts.csv", "csv")
        token = await alice_backend.get_access_token()

        result = await service.render(token, {"kind": "submission_message", "id": "m1", "max_rows": 2})

        assert result["ok"] is True
        assert result["mode"] == "html"
        assert result["title"] == "Attachment (CSV)"
        assert "&lt;A&gt;" in result["html"]
        assert result["meta"]["bucket"] == "submission-csvs"
        assert result["meta"]["max_rows"] == 5
        assert "/sign/submission-csvs/" in result["url"]

    async def test_excel_title_includes_sheet(self, service, alice_backend):
        """Test workbook titles."""
        await alice_backend.upload("chat", "teams/team-1/inv.xlsx", xlsx_bytes([["a"], ["b"]], "Week 1"))
        await self._message(alice_backend, "teams/team-1/inv.xlsx", "xlsx")
        token = await alice_backend.get_access_token()

        result = await service.render(token, {"kind": "submission_message", "id": "m1"})

        assert result["title"] == "Attachment (EXCEL) - Week 1"

    async def test_word_returns_url(self, service, alice_backend):
        """Test non-tabular attachments answer with a signed URL."""
        await alice_backend.upload("chat", "teams/team-1/plan.docx", b"docx")
        await self._message(alice_backend, "teams/team-1/plan.docx", "docx")
        token = await alice_backend.get_access_token()

        result = await service.render(token, {"kind": "submission_message", "id": "m1"})

        assert result["mode"] == "url"
        assert result["office_embed_url"].startswith("https://view.officeapps.live.com/")

    async def test_storage_url_attachment(self, service, alice_backend):
        """Test that absolute storage URLs are mapped back to bucket and key."""
        await alice_backend.upload("chat", "x/a.pdf", b"%PDF")
        await self._message(alice_backend, alice_backend.get_public_url("chat", "x/a.pdf"), "pdf")
        token = await alice_backend.get_access_token()

        result = await service.render(token, {"kind": "submission_message", "id": "m1"})

        assert result["meta"]["path"] == "x/a.pdf"

    async def test_foreign_url_not_supported(self, service, alice_backend):
        """Test that foreign URLs cannot be previewed server-side."""
        await self._message(alice_backend, "https://cdn.example.com/a.pdf", "pdf")
        token = await alice_backend.get_access_token()

        with pytest.raises(PreviewRequestError, match="attachment_url_not_supported"):
            await service.render(token, {"kind": "submission_message", "id": "m1"})

    async def test_non_member_forbidden(self, service, alice_backend, carol_backend):
        """Test that other teams cannot preview."""
        await alice_backend.upload("chat", "teams/team-1/a.pdf", b"%PDF")
        await self._message(alice_backend, "teams/team-1/a.pdf", "pdf")
        token = await carol_backend.get_access_token()

        with pytest.raises(PreviewRequestError) as exc_info:
            await service.render(token, {"kind": "submission_message", "id": "m1"})

        assert exc_info.value.error == "forbidden"
        assert exc_info.value.status == 403

    async def test_auth_errors(self, service):
        """Test missing and unknown bearer tokens."""
        with pytest.raises(PreviewRequestError, match="missing_bearer_token"):
            await service.render(None, {})
        with pytest.raises(PreviewRequestError) as exc_info:
            await service.render("bogus", {})
        assert exc_info.value.status == 401

    async def test_lookup_errors(self, service, alice_backend):
        """Test request validation failures."""
        token = await alice_backend.get_access_token()

        with pytest.raises(PreviewRequestError, match="invalid_kind"):
            await service.render(token, {"kind": "email", "id": "x"})
        with pytest.raises(PreviewRequestError, match="message_not_found"):
            await service.render(token, {"kind": "direct_message", "id": "x"})
        with pytest.raises(PreviewRequestError, match="team_id required"):
            await service.render(token, {"path": "a.csv"})
        with pytest.raises(PreviewRequestError, match="path required"):
            await service.render(token, {"team_id": "team-1"})

    async def test_path_fallback(self, service, alice_backend):
        """Test preview by team and storage path."""
        await alice_backend.upload("submission-csvs", "team-1/x.csv", b"a\nb\n")
        token = await alice_backend.get_access_token()

        result = await service.render(
            token, {"team_id": "team-1", "path": "team-1/x.csv", "attachment_type": "csv"}
        )

        assert result["mode"] == "html"

    async def test_missing_object(self, service, alice_backend):
        """Test that signing a missing object fails."""
        token = await alice_backend.get_access_token()

        with pytest.raises(PreviewRequestError, match="create_signed_url_failed"):
            await service.render(token, {"team_id": "team-1", "path": "nope.csv", "attachment_type": "csv"})
