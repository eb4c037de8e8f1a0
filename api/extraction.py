import logging

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

import core.globals

logger = logging.getLogger(__name__)
router = APIRouter(tags=["extraction"])

GENERIC_FAILURE = "An error occurred"


class ChunkResponse(BaseModel):
    fileurl: str

class UploadUrlResponse(BaseModel):
    url: str


@router.get("/", response_class=PlainTextResponse)
async def health():
    return "server ok"


@router.get("/s3url", response_model=UploadUrlResponse)
async def issue_upload_url():
    """Issues a presigned PUT URL for a fresh mp4 object."""
    try:
        target = await core.globals.storage_sink.request_write_target()
    except Exception:
        logger.exception("Could not issue upload URL")
        return PlainTextResponse(GENERIC_FAILURE, status_code=500)
    return UploadUrlResponse(url=target.url)


@router.get("/youtubechunk-to-s3", response_model=ChunkResponse)
async def youtube_chunk_to_s3(
    url: str = Query(..., min_length=1),
    start: float = Query(..., ge=0, allow_inf_nan=False),
    end: float = Query(..., ge=0, allow_inf_nan=False),
):
    """Extracts [start, end) seconds of the video and returns the stored object URL."""
    manager = core.globals.job_manager
    try:
        # Whole seconds, half rounds up
        start_second, end_second = int(start + 0.5), int(end + 0.5)
        job = manager.create_job(url, start_second, end_second)
    except (ValueError, OverflowError):
        raise HTTPException(status_code=400, detail="Invalid chunk range")

    try:
        fileurl = await manager.run(job)
    except Exception:
        # Root cause stays in the logs
        logger.exception(f"Job {job.id} failed")
        return PlainTextResponse(GENERIC_FAILURE, status_code=500)
    return ChunkResponse(fileurl=fileurl)
