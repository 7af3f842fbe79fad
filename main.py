"""HTTP entrypoint for the image library.

Exposes the upload pipeline to the authoring UI: optimized and plain
uploads, batch uploads, deletes, responsive sets (inline or queued on rq)
and a listing of stored assets. Local storage is served from the same app
under the configured base URL.

Run with ``uvicorn main:app``.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from redis import Redis
from redis.exceptions import RedisError
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job
from starlette.datastructures import UploadFile as StarletteUploadFile

from image_library.config import Settings, build_coordinator, load_settings, setup_logging
from image_library.coordinator import UploadCoordinator
from image_library.errors import ErrorKind, ImageLibraryError
from image_library.jobs import generate_set_job
from image_library.models import SourceImage, UploadResult, VariantKind
from image_library.responsive import DEFAULT_WIDTHS, ResponsiveSetGenerator
from image_library.storage import LocalFilesystemBackend

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.VALIDATION_REJECTED: 400,
    ErrorKind.DECODE_FAILED: 422,
    ErrorKind.ENCODE_FAILED: 500,
    ErrorKind.STORE_FAILED: 500,
    ErrorKind.MIRROR_FAILED: 500,
}


async def _read_source(file: StarletteUploadFile) -> SourceImage:
    return SourceImage(
        data=await file.read(),
        content_type=file.content_type or "application/octet-stream",
        filename=file.filename or "image",
    )


def _parse_widths(widths: str) -> List[int]:
    if not widths.strip():
        return list(DEFAULT_WIDTHS)
    try:
        parsed = [int(w) for w in widths.split(",") if w.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail="widths must be a comma-separated list of integers.")
    if any(w <= 0 for w in parsed):
        raise HTTPException(status_code=400, detail="widths must be positive.")
    return parsed


def _upload_payload(result: UploadResult) -> dict:
    primary = result.asset(VariantKind.WEBP) or result.assets[0]
    return {
        "success": True,
        "url": result.url,
        "path": primary.key,
        **result.model_dump(mode="json"),
    }


def create_app(settings: Optional[Settings] = None, coordinator: Optional[UploadCoordinator] = None) -> FastAPI:
    """Build the FastAPI app.

    Backends are constructed here, once, and closed when the app shuts down.
    """
    settings = settings or load_settings()
    setup_logging(settings)
    coordinator = coordinator or build_coordinator(settings)
    logger.info("[startup] Storage backends: %s", ", ".join(b.name for b in coordinator.backends))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await coordinator.close()
        logger.info("[shutdown] Storage backends closed")

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.coordinator = coordinator
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # adjust in prod
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount the local storage root so the relative URLs returned by the
    # local backend resolve, e.g. /image_library/pictures/<name>.webp.
    static_prefixes = []
    for backend in coordinator.backends:
        if isinstance(backend, LocalFilesystemBackend) and backend.base_url.startswith("/"):
            os.makedirs(backend.root, exist_ok=True)
            app.mount(backend.base_url, StaticFiles(directory=str(backend.root)), name=f"static-{backend.name}")
            static_prefixes.append(backend.base_url + "/")

    # --- Middleware ---
    @app.middleware("http")
    async def add_cache_control_header(request: Request, call_next):
        response = await call_next(request)
        if any(request.url.path.startswith(prefix) for prefix in static_prefixes):
            response.headers["Cache-Control"] = "public, max-age=31536000, immutable"
        return response

    @app.exception_handler(ImageLibraryError)
    async def image_library_error_handler(request: Request, exc: ImageLibraryError):
        return JSONResponse(status_code=ERROR_STATUS.get(exc.kind, 500), content=exc.to_dict())

    def get_queue() -> Queue:
        conn = Redis(host=settings.queue.redis_host, port=settings.queue.redis_port, db=0)
        return Queue(settings.queue.queue_name, connection=conn)

    # --- Upload Endpoints ---
    @app.post("/images")
    async def upload_image_endpoint(
        file: UploadFile = File(...),
        folder: str = Form("pictures"),
        optimize: bool = Form(True),
        quality: Optional[int] = Form(None, ge=0, le=100),
        generate_avif: Optional[bool] = Form(None),
    ):
        source = await _read_source(file)
        if not optimize:
            result = await coordinator.upload_original(source, folder=folder)
            return _upload_payload(result)
        overrides = {}
        if quality is not None:
            overrides["quality"] = quality
        if generate_avif is not None:
            overrides["generate_avif"] = generate_avif
        options = coordinator.default_options.model_copy(update=overrides)
        result = await coordinator.ingest(source, options, folder=folder)
        return _upload_payload(result)

    @app.put("/images")
    async def upload_many_endpoint(request: Request):
        form = await request.form()
        files = [
            value for key, value in form.multi_items()
            if key.startswith("file") and isinstance(value, StarletteUploadFile)
        ]
        if not files:
            raise HTTPException(status_code=400, detail="No files provided")
        folder = form.get("folder") or "pictures"
        sources = [await _read_source(f) for f in files]
        results = await coordinator.ingest_many(sources, folder=str(folder))
        uploads = [
            {"success": False, **r.to_dict()} if isinstance(r, ImageLibraryError) else _upload_payload(r)
            for r in results
        ]
        return {
            "success": all(u["success"] for u in uploads),
            "uploads": uploads,
            "summary": {"totalFiles": len(uploads), "failed": sum(not u["success"] for u in uploads)},
        }

    @app.delete("/images")
    async def delete_image_endpoint(path: Optional[str] = Query(None)):
        if not path:
            raise HTTPException(status_code=400, detail="Image path required")
        results = await coordinator.delete(path)
        success = any(results.values())
        return {
            "success": success,
            "results": results,
            "message": "Image deleted successfully" if success else "Image not found",
        }

    @app.post("/images/responsive")
    async def responsive_set_endpoint(
        file: UploadFile = File(...),
        widths: str = Form(""),
        folder: str = Form("pictures"),
        defer: bool = Form(False),
    ):
        source = await _read_source(file)
        width_list = _parse_widths(widths)
        if defer:
            # Validate now so the caller gets the rejection, not the worker.
            coordinator.validator.validate(source)
            try:
                job = get_queue().enqueue(
                    generate_set_job,
                    kwargs={
                        "data": source.data,
                        "content_type": source.content_type,
                        "filename": source.filename,
                        "widths": width_list,
                        "folder": folder,
                    },
                )
            except RedisError as e:
                raise HTTPException(status_code=503, detail=f"Job queue unavailable: {e}")
            return {"job_id": job.id, "status": job.get_status(refresh=False)}
        results = await ResponsiveSetGenerator(coordinator).generate_set(source, width_list, folder=folder)
        return {"sizes": {str(width): _upload_payload(result) for width, result in results.items()}}

    @app.get("/jobs/{job_id}")
    async def job_status_endpoint(job_id: str):
        queue = get_queue()
        try:
            job = Job.fetch(job_id, connection=queue.connection)
        except NoSuchJobError:
            raise HTTPException(status_code=404, detail="Job not found.")
        except RedisError as e:
            raise HTTPException(status_code=503, detail=f"Job queue unavailable: {e}")
        return {
            "status": job.get_status(refresh=False),
            "result": job.return_value() if job.is_finished else None,
            "error": str(job.exc_info) if job.is_failed else None,
        }

    # --- Library ---
    @app.get("/library/assets")
    async def list_library_assets(folder: str = Query("pictures")):
        """List assets stored on the primary backend, most recent first where the backend knows."""
        backend = coordinator.backends[0]
        try:
            keys = await backend.list_keys(folder)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"assets": [{"key": key, "url": backend.resolve_url(key)} for key in keys]}

    return app


app = create_app()
