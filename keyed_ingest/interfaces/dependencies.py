from fastapi import Request

from keyed_ingest.core.exceptions import AppException
from keyed_ingest.services.workspace import UploadWorkspace


def get_workspace(request: Request) -> UploadWorkspace:
    """Workspace built by the application lifespan."""
    workspace = getattr(request.app.state, "workspace", None)
    if workspace is None:
        raise AppException("Workspace is not initialized", error_code="SERVICE_UNAVAILABLE", status_code=503)
    return workspace
