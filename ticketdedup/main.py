"""
ticketdedup - Main Application
===============================

Groups chat-channel messages into support tickets.

Each incoming message is filtered, classified by an LLM and then attached
to the ticket it belongs to (same thread, same canonical key, semantically
close, or recent activity in the same channel), or opens a new ticket.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services, sequencer, pipeline and DTOs
- Domain: Entities, normalization, scoring and prompts
- Infrastructure: Database, LLM, vector store, cache
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Tuple

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from ticketdedup.config import settings
from ticketdedup.core import ApplicationException, ConfigurationException, VectorStoreException

# Infrastructure
from ticketdedup.infrastructure.database import init_database, close_database, create_tables
from ticketdedup.infrastructure.llm import create_llm_client
from ticketdedup.infrastructure.vectorstore import MilvusVectorStore

# Grouping module
from ticketdedup.grouping.application import ClassificationService, IngestionPipeline, MessageSequencer
from ticketdedup.grouping.infrastructure import (
    GroupingConfigManager,
    InMemoryVectorStore,
    LLMClientAdapter,
    SessionGroupingRunner,
    get_event_broadcaster,
    init_classification_cache,
    shutdown_classification_cache,
)
from ticketdedup.grouping.interfaces import intake_router, tickets_router

# Logging and metrics
from ticketdedup.shared.infrastructure.logging import setup_logging, get_logger
from ticketdedup.shared.infrastructure.grafana import init_grafana_exporter
from ticketdedup.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)

logger = get_logger(__name__)


async def init_vector_stores() -> Tuple[object, object, str]:
    """
    Ticket and message vector stores.

    Milvus when ZILLIZ_URI is set and reachable, otherwise in-memory stores
    that live as long as the process.
    """
    if settings.zilliz_uri:
        ticket_store = MilvusVectorStore(settings.milvus_ticket_collection)
        message_store = MilvusVectorStore(settings.milvus_message_collection)
        try:
            await ticket_store.initialize()
            await message_store.initialize()
            return ticket_store, message_store, "milvus"
        except VectorStoreException as e:
            logger.warning(f"Milvus not available, keeping embeddings in memory: {e}")
    else:
        logger.info("ZILLIZ_URI not set, keeping embeddings in memory")

    return InMemoryVectorStore(), InMemoryVectorStore(), "memory"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Start the classification cache sweeper
    4. Load grouping thresholds and watch the file
    5. Initialize Grafana exporter, LLM client and vector stores
    6. Start the grouping sequencer and build the ingestion pipeline

    SHUTDOWN:
    1. Drain and stop the sequencer
    2. Close event listeners
    3. Stop the config watcher and the cache sweeper
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(level=settings.log_level, environment=settings.environment)
    logger.info("Starting ticketdedup", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use Alembic in production)
    logger.info("Creating database tables")
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    cache = await init_classification_cache(
        ttl_seconds=settings.classification_cache_ttl_seconds,
        sweep_interval_seconds=settings.cache_sweep_interval_seconds
    )

    logger.info("Loading grouping configuration")
    config_manager = GroupingConfigManager()
    config_manager.load(settings.grouping_config_path)
    config_manager.start_watching()

    if settings.grafana_host and settings.grafana_api_key and settings.grafana_instance_id:
        init_grafana_exporter(
            host=settings.grafana_host,
            api_key=settings.grafana_api_key,
            instance_id=settings.grafana_instance_id
        )
        logger.info("Grafana OTLP exporter initialized")
    else:
        logger.info("Grafana OTLP exporter not configured - metrics will not be exported")

    logger.info("Initializing LLM client", extra={"provider": settings.llm_provider})
    try:
        llm = LLMClientAdapter(create_llm_client())
    except ConfigurationException as e:
        logger.warning(f"LLM client not configured - message intake disabled: {e}")
        llm = None

    ticket_store, message_store, vector_backend = await init_vector_stores()

    broadcaster = get_event_broadcaster()
    sequencer = MessageSequencer()
    await sequencer.start()

    pipeline = None
    if llm is not None:
        runner = SessionGroupingRunner(
            llm_client=llm,
            ticket_store=ticket_store,
            message_store=message_store,
            config_manager=config_manager,
            events=broadcaster,
        )
        pipeline = IngestionPipeline(
            classifier=ClassificationService(llm, cache=cache),
            sequencer=sequencer,
            grouping_runner=runner,
            context_only_user_ids=settings.context_only_user_ids,
        )

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.sequencer = sequencer
    app.state.event_broadcaster = broadcaster
    app.state.config_manager = config_manager
    app.state.classification_cache = cache
    app.state.vector_backend = vector_backend

    logger.info("ticketdedup started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down ticketdedup")

    await sequencer.stop()
    await broadcaster.close()
    config_manager.stop_watching()
    await shutdown_classification_cache()
    await close_database()

    logger.info("ticketdedup shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="ticketdedup API",
    description="""
    ## Chat Message to Ticket Grouping

    Turns a stream of chat messages into deduplicated support tickets.

    ---

    ### Pipeline

    `normalize -> filter -> classify -> relevance gate -> sequenced grouping`

    **Grouping steps (first match wins):**
    1. Thread - an open ticket already holds a message of this thread
    2. Canonical key - an open ticket carries the same normalized signal key
    3. Semantic - nearest open ticket by embedding, inside the lookback window
    4. Recent channel - scored fallback with guardrail and LLM arbitration
    5. Create - a new ticket, unless the author is context-only

    ---

    ### Endpoints

    - `POST /intake/messages` - Ingest one message
    - `GET /tickets` - List tickets
    - `GET /tickets/{id}` - Ticket with its messages
    - `WS /tickets/events` - `ticket_updated` stream
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(intake_router)
app.include_router(tickets_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Grouping sequencer state and queue depth
    - Classification cache size
    - Vector store backend
    """
    state = request.app.state
    sequencer = getattr(state, "sequencer", None)
    cache = getattr(state, "classification_cache", None)

    checks = {
        "sequencer": "running" if sequencer and sequencer.is_running else "stopped",
        "sequencer_pending": sequencer.pending if sequencer else 0,
        "classification_cache": f"{len(cache)} entries" if cache is not None else "not_initialized",
        "vector_store": getattr(state, "vector_backend", "not_initialized"),
        "llm_provider": settings.llm_provider,
        "intake": "available" if getattr(state, "pipeline", None) else "not_configured",
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "ticketdedup",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "grouping": {
                "endpoints": [
                    "POST /intake/messages - Ingest one chat message",
                    "GET /tickets - List tickets",
                    "GET /tickets/{id} - Ticket with messages",
                    "WS /tickets/events - Ticket update stream"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ticketdedup.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
