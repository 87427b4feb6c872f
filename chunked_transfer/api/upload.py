"""Chunked upload API endpoints."""
import logging

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from chunked_transfer.auth import authenticate_user
from chunked_transfer.schemas.upload import (
    CancelUploadResponse,
    ChunkAcceptedResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    UploadStatusResponse,
)
from chunked_transfer.services.factory import TransferServices
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

router = APIRouter()


def get_services(request: Request) -> TransferServices:
    return request.app.state.services


@router.post("/upload/chunk", response_model=ChunkAcceptedResponse)
async def upload_chunk(
    session_id: str = Form(...),
    chunk_index: int = Form(...),
    total_chunks: int = Form(...),
    file_name: str = Form(...),
    file_size: int = Form(...),
    chunk: UploadFile = File(...),
    services: TransferServices = Depends(get_services),
    username: str = Depends(authenticate_user)
):
    """
    Upload one chunk of a file.

    Chunks may arrive in any order and may be sent more than once; the
    session is created by whichever chunk arrives first.

    Returns:
        ChunkAcceptedResponse: Acknowledgement with the session's progress
    """
    # Read one byte past the ceiling so oversized payloads are detected without buffering them
    payload = await chunk.read(services.settings.max_chunk_size + 1)
    await chunk.close()

    return await services.receiver.receive(
        session_id=session_id,
        chunk_index=chunk_index,
        total_chunks=total_chunks,
        file_name=file_name,
        file_size=file_size,
        payload=payload
    )


@router.post("/upload/complete", response_model=CompleteUploadResponse)
async def complete_upload(
    request: CompleteUploadRequest,
    services: TransferServices = Depends(get_services),
    username: str = Depends(authenticate_user)
):
    """
    Reassemble a fully staged upload into its destination.

    Fails with the received and total counts when chunks are missing, so the
    client can upload just those and try again.
    """
    logger.info(
        "Completing upload %s for destination %s (user %s)",
        request.session_id, request.destination_id, username
    )
    return await services.reassembler.complete(
        request.session_id,
        request.destination_id,
        content_digest=request.content_digest
    )


@router.get("/upload/status/{session_id}", response_model=UploadStatusResponse)
async def get_upload_status(
    session_id: str,
    services: TransferServices = Depends(get_services),
    username: str = Depends(authenticate_user)
):
    """Report how many chunks of a session have been received."""
    return await services.status_reporter.status(session_id)


@router.delete("/upload/{session_id}", response_model=CancelUploadResponse)
async def cancel_upload(
    session_id: str,
    services: TransferServices = Depends(get_services),
    username: str = Depends(authenticate_user)
):
    """Cancel an upload session and delete its staged chunks."""
    removed = await services.collector.discard(session_id)
    return CancelUploadResponse(status="cancelled" if removed else "not_found", session_id=session_id)
