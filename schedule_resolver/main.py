"""
Schedule Intent Resolver Service
Resolves scheduling utterances into intents using rules, an external classifier and per-user memory
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
import structlog

from .config import settings
from .document_store import RedisDocumentStore
from .external_classifier import HttpIntentClassifier
from .metrics import metrics_endpoint, update_gauges
from .models import ResolveRequest, ResolutionResult
from .orchestrator import build_orchestrator
from .utils.http_client import HTTPClientPool
from .utils.logging import setup_logging
from .utils.redis_pool import RedisPool

setup_logging(settings.log_level, settings.debug)
logger = structlog.get_logger(__name__)


async def cleanup_loop(orchestrator, interval: float):
    """Periodically sweep expired contexts and cache entries until cancelled"""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = orchestrator.cleanup_expired()
            if any(removed.values()):
                logger.info("Expired state cleaned up", **removed)
        except Exception as e:
            logger.error("Cleanup failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("🗓️ Starting Schedule Intent Resolver")

    app.state.redis_pool = RedisPool(max_connections=settings.redis_max_connections)
    await app.state.redis_pool.initialize(settings.redis_url)

    app.state.http_pool = HTTPClientPool(timeout=settings.service_timeout)
    await app.state.http_pool.initialize()

    app.state.orchestrator = build_orchestrator(
        settings,
        RedisDocumentStore(app.state.redis_pool, settings.redis_key_prefix),
        HttpIntentClassifier(settings, app.state.http_pool),
    )

    app.state.cleanup_task = asyncio.create_task(
        cleanup_loop(app.state.orchestrator, settings.cleanup_interval)
    )

    logger.info("✅ Resolver components initialized")

    yield

    logger.info("🛑 Shutting down Schedule Intent Resolver")
    app.state.cleanup_task.cancel()
    await app.state.orchestrator.close()
    await app.state.http_pool.close()
    await app.state.redis_pool.close()


app = FastAPI(
    title="Schedule Intent Resolver",
    description="Evidence-driven intent resolution with layered per-user memory",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.post("/resolve", response_model=ResolutionResult)
async def resolve_utterance(request: ResolveRequest):
    """Resolve an utterance into an intent and entities"""
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Text must not be empty")
    return await app.state.orchestrator.resolve(request.text, request.user_id)


@app.get("/memory/{user_id}")
async def get_user_memory(user_id: str):
    """Get a user's long-term memory and its summary"""
    memory_store = app.state.orchestrator.memory_store
    memory = await memory_store.get_user_memory(user_id)
    return {
        "memory": memory.model_dump(mode="json"),
        "summary": memory_store.generate_memory_summary(memory),
        "record_count": memory.total_records,
    }


@app.post("/memory/flush")
async def flush_memory():
    """Write every pending batched memory snapshot to storage"""
    try:
        return await app.state.orchestrator.memory_store.flush()
    except Exception as e:
        logger.error("Memory flush failed", error=str(e))
        raise HTTPException(status_code=500, detail="Memory flush failed")


@app.get("/stats")
async def get_stats():
    """Get resolver statistics"""
    return app.state.orchestrator.stats()


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    redis_pool = getattr(app.state, "redis_pool", None)
    return {
        "status": "healthy",
        "service": "schedule-resolver",
        "redis": await redis_pool.health_check() if redis_pool is not None else False,
        "rules_loaded": len(app.state.orchestrator.pattern_classifier.rules),
    }


@app.get("/metrics")
async def get_metrics():
    """Get service metrics in Prometheus format"""
    if not settings.metrics_enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    update_gauges(app.state.orchestrator.stats())
    return await metrics_endpoint()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
