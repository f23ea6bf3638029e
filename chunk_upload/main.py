import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from chunk_upload.config import UploadConfig, load_config
from chunk_upload.exceptions import ChunkUploadError, StagingDirectoryError
from chunk_upload.models.chunk_models import CompleteUploadRequest
from chunk_upload.services.cleanup_service import CleanupService
from chunk_upload.services.request_stream import RequestBodyReader
from chunk_upload.services.upload_service import UploadService

logger = logging.getLogger(__name__)


def create_app(config: Optional[UploadConfig] = None) -> FastAPI:
    if config is None:
        config = load_config()

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        cleanup_service = CleanupService(config)
        cleanup_task = asyncio.create_task(cleanup_service.start_cleanup_scheduler())

        yield

        # Shutdown
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass

    app = FastAPI(title="Chunked File Upload Service", lifespan=lifespan)

    # CORS Configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    upload_service = UploadService(config)
    app.state.config = config
    app.state.upload_service = upload_service

    @app.post("/upload-chunk", response_class=PlainTextResponse)
    async def upload_chunk(request: Request):
        """Store one chunk of a multipart upload"""
        body = RequestBodyReader(request.stream())
        try:
            await run_in_threadpool(
                upload_service.process_chunk, body, request.headers.get("content-type")
            )
        except ChunkUploadError as e:
            logger.error(f"Chunk upload failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        return "chunk processed"

    @app.post("/completed-chunks", response_class=PlainTextResponse)
    async def completed_chunks(payload: CompleteUploadRequest):
        """Rebuild the uploaded chunks into the final file"""
        try:
            await run_in_threadpool(
                upload_service.complete_upload,
                payload.upload_id,
                payload.filename,
                payload.total_chunks,
            )
        except ChunkUploadError as e:
            logger.error(f"Completing upload {payload.upload_id} failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        return "file processed"

    @app.get("/upload/{upload_id}")
    async def get_upload(upload_id: str):
        """Get the staged chunks of an upload"""
        try:
            upload = await run_in_threadpool(upload_service.get_upload, upload_id)
        except StagingDirectoryError as e:
            raise HTTPException(status_code=400, detail=str(e))

        if not upload:
            raise HTTPException(status_code=404, detail="Upload not found")
        return upload

    @app.delete("/upload/{upload_id}")
    async def abort_upload(upload_id: str):
        """Abort an upload and drop its staged chunks"""
        try:
            upload = await run_in_threadpool(upload_service.get_upload, upload_id)
            if not upload:
                raise HTTPException(status_code=404, detail="Upload not found")

            await run_in_threadpool(upload_service.abort_upload, upload_id)
        except ChunkUploadError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return {"status": "aborted"}

    @app.get("/uploads/active")
    async def get_active_uploads():
        """Get all uploads with staged chunks"""
        uploads = await run_in_threadpool(upload_service.get_active_uploads)
        return {"uploads": uploads}

    return app


app = create_app()


def main():
    config = app.state.config
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
