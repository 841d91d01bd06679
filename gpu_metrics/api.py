# gpu_metrics/api.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from .db import MetricsDB
from .errors import AuthenticationError, PersistenceError
from .types import MetricsPayload

log = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def parse_bearer(header: str | None) -> str:
    """Pull the token out of `Authorization: Bearer <token>` or raise 401."""
    if not header:
        raise HTTPException(401, "Missing Authorization header")
    if not header.startswith(BEARER_PREFIX) or len(header) <= len(BEARER_PREFIX):
        raise HTTPException(401, "Invalid Authorization header format")
    return header[len(BEARER_PREFIX):]


def create_app(db: MetricsDB) -> FastAPI:
    app = FastAPI(title="GPU Metrics Ingestion API")
    app.state.db = db

    # ---------- ingestion ------------------------------------------------
    @app.post("/metrics")
    async def ingest_metrics(request: Request, authorization: str | None = Header(None)):
        api_key = parse_bearer(authorization)

        try:
            instance_id = await run_in_threadpool(db.authenticate_instance, api_key)
        except AuthenticationError as exc:
            log.warning("Authentication failed: %s", exc)
            raise HTTPException(401, "Unauthorized")

        try:
            payload = MetricsPayload.from_json(await request.body())
        except ValidationError:
            raise HTTPException(400, "Invalid JSON payload")

        # a valid key only lets a host write under its own identity
        if payload.instance_id != instance_id:
            log.warning(
                "Instance ID mismatch: authenticated=%s, payload=%s",
                instance_id,
                payload.instance_id,
            )
            raise HTTPException(403, "Instance ID mismatch")

        timestamp = payload.normalized_timestamp()

        try:
            await run_in_threadpool(db.insert_metrics, instance_id, timestamp, payload.gpus)
        except PersistenceError as exc:
            log.error("Failed to insert metrics: %s", exc)
            raise HTTPException(500, "Failed to store metrics")

        log.info("Stored %d GPU metrics for instance %s", len(payload.gpus), instance_id)
        return {"status": "success"}

    # ---------- health ---------------------------------------------------
    @app.get("/health")
    async def health():
        if not await run_in_threadpool(db.ping):
            raise HTTPException(503, "Database connection failed")
        return {"status": "healthy"}

    return app
