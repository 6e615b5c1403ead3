"""POST /exports/{page} -- run a named export and return it as a file download."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from export_builder.core.errors import (
    ConfigurationError,
    ExportFailedError,
    ExportPermissionError,
    NotFoundError,
)
from export_builder.core.logging import get_logger
from export_builder.exports.dispatcher import ExportDispatcher
from export_builder.schema.filters import RuntimeFilter

logger = get_logger(__name__)
router = APIRouter()


def get_dispatcher() -> ExportDispatcher:
    return ExportDispatcher()


@router.post("/{page}")
def download_export(
    page: str,
    runtime_filter: RuntimeFilter | None = None,
    dispatcher: ExportDispatcher = Depends(get_dispatcher),
):
    """Resolve *page*, run it with the posted filter and stream back csv / xlsx bytes."""
    runtime_filter = (runtime_filter or RuntimeFilter()).model_copy(update={"page": page})
    try:
        export_file = dispatcher.download(runtime_filter)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except ExportPermissionError as exc:
        raise HTTPException(status_code=403, detail=exc.message)
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=exc.message)
    except ExportFailedError as exc:
        raise HTTPException(status_code=500, detail=f"Export failed: {exc.message}")

    return Response(
        content=export_file.content,
        media_type=export_file.media_type,
        headers={"Content-Disposition": export_file.content_disposition},
    )
