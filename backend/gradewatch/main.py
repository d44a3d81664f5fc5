"""
Gradewatch - FastAPI application
"""

import logging

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError
from rq import Worker
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gradewatch.api.v1 import auth
from gradewatch.core.config import settings
from gradewatch.core.db import get_db
from gradewatch.core.errors import add_error_handlers
from gradewatch.core.queue import _get_redis_connection
from gradewatch.routers import catalog, duplicates, grades, snapshots, stats

logging.basicConfig(level=settings.LOG_LEVEL)

app = FastAPI(
    title="Gradewatch API",
    description="Grade tracking, F-grade follow-up and quarter snapshots",
    version="0.1.0",
)

app.include_router(auth.router, prefix="/api/v1")
app.include_router(catalog.router, prefix="/api/v1")
app.include_router(grades.router, prefix="/api/v1")
app.include_router(duplicates.router, prefix="/api/v1")
app.include_router(stats.router, prefix="/api/v1")
app.include_router(snapshots.router, prefix="/api/v1")

add_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict to the dashboard origin in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    """Root endpoint"""
    return {
        "message": "Gradewatch API",
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/health")
def health():
    """Health check endpoint"""
    return {"status": "ok"}


@app.get("/health/db")
def health_db(db: Session = Depends(get_db)):
    """Database health check endpoint"""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=503,
            detail={
                "status": "error",
                "database": "unavailable",
                "error": str(exc),
            },
        ) from exc

    return {"status": "ok", "db": "ok"}


@app.get("/health/redis")
def health_redis():
    """Redis health check endpoint (used for async snapshot analysis)."""
    try:
        redis_connection = _get_redis_connection()
        redis_connection.ping()
    except RedisError as exc:
        raise HTTPException(
            status_code=503,
            detail={
                "status": "error",
                "redis": "unavailable",
                "error": str(exc),
            },
        ) from exc

    return {"status": "ok", "redis": "ok"}


@app.get("/health/worker")
def health_worker():
    """Worker health check endpoint (only meaningful when ASYNC_QUEUE_ENABLED=true)."""
    if not settings.ASYNC_QUEUE_ENABLED:
        return {"status": "skipped", "async_enabled": False}

    try:
        redis_connection = _get_redis_connection()
        redis_connection.ping()
        workers = Worker.all(connection=redis_connection)
    except RedisError as exc:
        raise HTTPException(
            status_code=503,
            detail={
                "status": "error",
                "redis": "unavailable",
                "error": str(exc),
            },
        ) from exc

    active_workers = [
        worker.name
        for worker in workers
        if any(queue.name == settings.RQ_QUEUE_NAME for queue in worker.queues)
    ]
    if not active_workers:
        raise HTTPException(
            status_code=503,
            detail={
                "status": "error",
                "worker": "unavailable",
                "queue": settings.RQ_QUEUE_NAME,
                "workers": 0,
            },
        )

    return {
        "status": "ok",
        "async_enabled": True,
        "queue": settings.RQ_QUEUE_NAME,
        "workers": len(active_workers),
    }
