"""Document-preview API routes."""

from typing import Any

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ...app import IApplication
from ...errors import ChatError
from ...logging_config import get_logger
from ...preview import PreviewRequestError

logger = get_logger(__name__)


class PreviewRequest(BaseModel):
    """Preview by message identity, or by team and storage path."""

    kind: str | None = None
    id: str | None = None
    max_rows: Any = None
    max_cols: Any = None
    team_id: str | None = None
    path: str | None = None
    bucket: str | None = None
    attachment_type: str | None = None


def bearer_token(authorization: str | None) -> str | None:
    """Credential from an `Authorization: Bearer <token>` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def create_preview_router(app: IApplication) -> APIRouter:
    """Create document-preview router."""
    router = APIRouter(prefix="/functions/v1", tags=["preview"])

    @router.post("/document-preview")
    async def document_preview(
        request: PreviewRequest,
        authorization: str | None = Header(None),
    ) -> JSONResponse:
        """Render a bounded preview of a message attachment."""
        body = request.model_dump(exclude_none=True)
        try:
            result = await app.preview_service.render(bearer_token(authorization), body)
        except PreviewRequestError as e:
            return JSONResponse({"error": e.error}, status_code=e.status)
        except ChatError as e:
            logger.error("Preview rendering failed: %s", e.message)
            return JSONResponse({"error": e.message}, status_code=500)
        return JSONResponse(result)

    return router
