"""Success envelopes and CSV downloads."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import Response
from pydantic import BaseModel

if TYPE_CHECKING:
    from listingflow.services.authz import ActorContext
    from listingflow.services.reporting import CsvExport


def dump(value: Any) -> Any:
    """Convert models (and containers of models) to camelCase JSON data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, dict):
        return {k: dump(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [dump(v) for v in value]
    return value


def success(actor_or_request_id: ActorContext | str, **data: Any) -> dict[str, Any]:
    """Build ``{"ok": true, "data": {...}, "requestId": ...}``."""
    request_id = (
        actor_or_request_id
        if isinstance(actor_or_request_id, str)
        else actor_or_request_id.request_id
    )
    return {"ok": True, "data": dump(data), "requestId": request_id}


def csv_response(export: CsvExport) -> Response:
    """Serve a CSV export as a file attachment."""
    return Response(
        content=export.content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )
