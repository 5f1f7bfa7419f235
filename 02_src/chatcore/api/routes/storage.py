"""Signed object download and health routes."""

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response

from ...app import IApplication


def create_storage_router(app: IApplication) -> APIRouter:
    """Create storage router."""
    router = APIRouter(tags=["storage"])

    @router.get("/storage/v1/object/sign/{bucket}/{key:path}")
    async def signed_object(bucket: str, key: str, token: str = Query(...)) -> Response:
        """Serve an object behind a signed URL."""
        found = await app.backend.read_signed_object(bucket, key, token)
        if found is None:
            raise HTTPException(status_code=400, detail="Invalid or expired signature")
        data, content_type = found
        return Response(content=data, media_type=content_type)

    @router.get("/health")
    async def health() -> dict:
        """Liveness probe."""
        return {"status": "ok"}

    return router
