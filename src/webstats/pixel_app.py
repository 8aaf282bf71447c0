from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Response

from webstats.accumulator import BatchAccumulator
from webstats.allowlist import host_without_port, is_whitelisted
from webstats.config import Settings
from webstats.encoders import BatchEncoder, ParquetBatchEncoder, make_encoder
from webstats.flusher import BatchFlusher
from webstats.records import extract_record

logger = logging.getLogger(__name__)

METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

# set verbatim, starlette would otherwise append "; charset=utf-8"
PIXEL_HEADERS = {"content-type": "text/css"}


def encoder_for(settings: Settings) -> BatchEncoder:
    if settings.encoding == ParquetBatchEncoder.name:
        return make_encoder(settings.encoding, compression=settings.parquet_compression)
    return make_encoder(settings.encoding)


def create_app(settings: Settings, encoder: Optional[BatchEncoder] = None) -> FastAPI:
    """
    Build the pixel app. The log directory must already exist
    (see config.prepare_log_dir).
    """
    app = FastAPI(title="webstats", docs_url=None, redoc_url=None, openapi_url=None)

    app.state.settings = settings
    app.state.accumulator = BatchAccumulator(settings.batch_size)
    app.state.encoder = encoder or encoder_for(settings)
    app.state.flusher = BatchFlusher(app.state.encoder, settings.log_dir)

    @app.on_event("shutdown")
    def _shutdown():
        flusher: BatchFlusher = app.state.flusher
        if settings.flush_on_shutdown:
            partial = app.state.accumulator.drain()
            if partial:
                logger.info("Flushing %d buffered records on shutdown", len(partial))
                flusher.submit(partial)
        flusher.close()

    @app.api_route("/{path:path}", methods=METHODS)
    def pixel(request: Request):
        host = host_without_port(request.headers.get("host", ""))
        if not is_whitelisted(host, settings.whitelisted_domains):
            raise HTTPException(404, "not found")

        batch = app.state.accumulator.append(extract_record(request))
        if batch is not None:
            app.state.flusher.submit(batch)

        return Response(content=b"", status_code=200, headers=PIXEL_HEADERS)

    return app
