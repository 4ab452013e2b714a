import asyncio
import json
import shutil
import tempfile
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import StreamingResponse

from keyed_ingest.core.exceptions import AppException, NotFoundError
from keyed_ingest.interfaces.dependencies import get_workspace
from keyed_ingest.schemas.file_upload import (
    FileEntryRead,
    FileListResponse,
    IngestResponse,
    MutationResponse,
    PreviewResponse,
    RecordCountResponse,
    RecordRead,
    RenameRequest,
    ReorderRequest,
)
from keyed_ingest.services.workspace import UploadWorkspace
from keyed_ingest.utils.file_utils import UploadSource, get_file_kind
from keyed_ingest.utils.progress import CancellationToken, ProgressChannel

router = APIRouter()


def _upload_source(file: UploadFile, last_modified: int, stream=None) -> UploadSource:
    return UploadSource.from_stream(
        stream or file.file,
        name=file.filename or "upload",
        last_modified=last_modified,
        content_type=file.content_type,
    )


@router.post("/ingest", response_model=IngestResponse)
async def ingest_file(
    file: UploadFile = File(...),
    last_modified: int = Form(0, description="Last-modified time of the source file in epoch ms"),
    key_field: Optional[str] = Form(None, description="Business key column"),
    revision_field: Optional[str] = Form(None, description="Column deciding conflicts"),
    workspace: UploadWorkspace = Depends(get_workspace),
) -> IngestResponse:
    """Ingest an uploaded file and return its counts"""
    result = await workspace.ingest(
        _upload_source(file, last_modified),
        key_field=key_field,
        revision_field=revision_field,
    )
    return IngestResponse(message="File ingested", data=result)


@router.post("/ingest/stream")
async def ingest_file_stream(
    file: UploadFile = File(...),
    last_modified: int = Form(0),
    key_field: Optional[str] = Form(None),
    revision_field: Optional[str] = Form(None),
    workspace: UploadWorkspace = Depends(get_workspace),
) -> StreamingResponse:
    """
    Ingest an uploaded file, streaming progress events as NDJSON.

    The last line carries either ``result`` or ``error``. A client that
    disconnects cancels the ingestion; committed batches are kept.
    """
    get_file_kind(file.filename or "")

    # The response outlives the request handler, so keep a private copy of the upload
    spool = tempfile.SpooledTemporaryFile(max_size=8 * 1024 * 1024)
    file.file.seek(0)
    shutil.copyfileobj(file.file, spool)
    source = _upload_source(file, last_modified, stream=spool)

    token = CancellationToken()
    channel = ProgressChannel(token=token)

    async def event_stream():
        task = asyncio.create_task(workspace.ingest(
            source,
            channel=channel,
            token=token,
            key_field=key_field,
            revision_field=revision_field,
        ))
        try:
            async for event in channel:
                yield event.model_dump_json() + "\n"

            try:
                result = await task
                yield json.dumps({"result": result.model_dump()}) + "\n"
            except AppException as e:
                yield json.dumps({
                    "error": {"error_code": e.error_code, "message": e.message, "details": e.details}
                }, default=str) + "\n"

        finally:
            if not task.done():
                await channel.aclose()
                await asyncio.gather(task, return_exceptions=True)
            spool.close()

    return StreamingResponse(event_stream(), media_type="application/x-ndjson")


@router.get("/", response_model=FileListResponse)
async def list_files(workspace: UploadWorkspace = Depends(get_workspace)) -> FileListResponse:
    """List registered files by manual order"""
    entries = [FileEntryRead.model_validate(entry) for entry in workspace.list_files()]
    return FileListResponse(data=entries, total_records=len(entries))


@router.get("/records/count", response_model=RecordCountResponse)
async def count_records(workspace: UploadWorkspace = Depends(get_workspace)) -> RecordCountResponse:
    return RecordCountResponse(total=workspace.count())


@router.get("/records/preview", response_model=PreviewResponse)
async def preview_records(
    limit: Optional[int] = Query(None, ge=1, le=10000, description="Number of records to sample"),
    workspace: UploadWorkspace = Depends(get_workspace),
) -> PreviewResponse:
    records = [RecordRead.model_validate(record) for record in workspace.preview(limit)]
    return PreviewResponse(total=workspace.count(), data=records)


@router.get("/records/{key}", response_model=RecordRead)
async def get_record(key: str, workspace: UploadWorkspace = Depends(get_workspace)) -> RecordRead:
    record = workspace.get_record(key)
    if record is None:
        raise NotFoundError("Record", key)
    return RecordRead.model_validate(record)


@router.get("/export")
async def export_records(
    row_cap: Optional[int] = Query(None, ge=1, description="Maximum number of records to export"),
    filename: Optional[str] = Query(None, description="Name of the downloaded file"),
    workspace: UploadWorkspace = Depends(get_workspace),
) -> StreamingResponse:
    """Download the deduplicated store as CSV"""
    artifact = workspace.export_all(row_cap=row_cap, filename=filename)
    return StreamingResponse(
        artifact.iter_bytes(),
        media_type=artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )


@router.patch("/{file_id}", response_model=MutationResponse)
async def rename_file(
    file_id: str,
    request: RenameRequest,
    workspace: UploadWorkspace = Depends(get_workspace),
) -> MutationResponse:
    entry = workspace.rename(file_id, request.display_name)
    if entry is None:
        return MutationResponse(changed=False, message="File not found; nothing renamed")
    return MutationResponse(changed=True, message="File renamed", file=FileEntryRead.model_validate(entry))


@router.post("/{file_id}/reorder", response_model=MutationResponse)
async def reorder_file(
    file_id: str,
    request: ReorderRequest,
    workspace: UploadWorkspace = Depends(get_workspace),
) -> MutationResponse:
    changed = workspace.reorder(file_id, request.direction)
    entry = workspace.get_file(file_id)
    return MutationResponse(
        changed=changed,
        message="File moved" if changed else "Order unchanged",
        file=FileEntryRead.model_validate(entry) if entry else None,
    )


@router.delete("/{file_id}", response_model=MutationResponse)
async def delete_file(file_id: str, workspace: UploadWorkspace = Depends(get_workspace)) -> MutationResponse:
    """Delete a file and every record it owns"""
    removed = workspace.delete_cascade(file_id)
    if removed is None:
        return MutationResponse(changed=False, message="File not found; nothing deleted")
    return MutationResponse(changed=True, message="File deleted", records_removed=removed)
