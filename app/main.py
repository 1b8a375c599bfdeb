from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from app.core.limiter import limiter
from app.api.v1 import battles, rankings
from app.core.config import settings

import logging
import sys

# Configure logging early
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Song Battle Ranker API")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.include_router(battles.router, tags=["battles"])
app.include_router(rankings.router, tags=["rankings"])

@app.get("/health")
async def health_check():
    return {"status": "healthy"}

@app.get("/health/redis")
async def redis_health_check():
    """Check Redis connection for the rating queue."""
    try:
        from app.core.queue import sync_redis_conn
        sync_redis_conn.ping()
        return {
            "status": "healthy",
            "message": "Redis connection successful"
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
            "message": "Redis connection failed"
        }

@app.get("/health/worker")
async def worker_health_check():
    """Check worker status and rating queue length."""
    try:
        from app.core.queue import rating_queue, sync_redis_conn
        from rq import Worker

        workers = Worker.all(connection=sync_redis_conn)
        worker_info = [
            {
                "name": worker.name,
                "state": worker.state,
                "queues": [q.name for q in worker.queues]
            }
            for worker in workers
        ]

        return {
            "status": "healthy",
            "workers": worker_info,
            "queue_length": len(rating_queue)
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }
