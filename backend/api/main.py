# backend/api/main.py
from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from contextlib import asynccontextmanager
import logging
import re
from typing import Any, Dict, List, Optional

from config.settings import Settings, get_settings
from services.audit_logger import AuditLogger, client_fields
from services.event_queue import EventQueue
from services.request_context import RequestContext
from services.server_logger import ServerEventLogger
from storage.models import (
    AuditEvent,
    EventType,
    EventUser,
    LogLevel,
    ProcessSource,
    ServerEventIn,
    SeverityLevel,
)
from storage.partition_store import InvalidPartitionKey, JsonPartitionStore


logger = logging.getLogger(__name__)

BLOG_LINK_PATTERN = re.compile(r"/blog/([^/\s]+)")


def configure_logging(settings: Settings):
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# ============================================
# DEPENDENCIES
# ============================================

def get_event_queue(request: Request) -> EventQueue:
    return request.app.state.event_queue

def get_server_logger(request: Request) -> ServerEventLogger:
    return request.app.state.server_logger

def get_audit_logger(request: Request) -> AuditLogger:
    return request.app.state.audit_logger

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def report_route_error(server_logger: ServerEventLogger, route: str, exc: Exception):
    logger.error(f"❌ Error in {route}: {exc}")
    server_logger.log_exception(
        ProcessSource.API_ROUTER,
        f"Unhandled error in {route}",
        exc,
        context={"route": route}
    )


def comment_post_slug(discussion: Dict[str, Any]) -> str:
    """Blog slug from the /blog/<slug> link Giscus puts in the discussion body"""
    if discussion.get("category"):
        match = BLOG_LINK_PATTERN.search(discussion.get("body") or "")
        if match:
            return match.group(1)
    return "unknown"


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    # ============================================
    # LIFESPAN EVENTS
    # ============================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events"""
        logger.info(f"🚀 Starting {settings.APP_NAME}...")

        server_store = JsonPartitionStore(settings.SERVER_LOG_DIR)
        audit_store = JsonPartitionStore(settings.AUDIT_LOG_DIR)

        event_queue = EventQueue(server_store)
        app.state.settings = settings
        app.state.server_store = server_store
        app.state.audit_store = audit_store
        app.state.event_queue = event_queue
        app.state.server_logger = ServerEventLogger(event_queue, echo=settings.echo_events_enabled)
        app.state.audit_logger = AuditLogger(audit_store)

        event_queue.start()
        app.state.server_logger.log(
            ProcessSource.SYSTEM_MONITOR,
            LogLevel.INFO,
            f"{settings.APP_NAME} started",
            context={"version": settings.VERSION, "environment": settings.ENVIRONMENT}
        )
        logger.info("✅ All services initialized")

        yield

        # Shutdown
        logger.info("🔌 Shutting down...")
        await event_queue.stop(timeout=settings.SHUTDOWN_FLUSH_TIMEOUT)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)
    return app

# ============================================
# ENDPOINTS
# ============================================

def register_routes(app: FastAPI):

    @app.get("/")
    async def root(
        settings: Settings = Depends(get_app_settings),
        event_queue: EventQueue = Depends(get_event_queue)
    ):
        return {
            "service": settings.APP_NAME,
            "version": settings.VERSION,
            "status": "running",
            "queue_stats": event_queue.get_stats()
        }

    @app.get("/health")
    async def health_check(request: Request, event_queue: EventQueue = Depends(get_event_queue)):
        """Health check"""
        health = {"status": "healthy", "services": {}}

        queue_stats = event_queue.get_stats()
        health["services"]["queue"] = {
            "running": queue_stats['running'],
            "size": queue_stats['current_size'],
            "persisted": queue_stats['total_persisted'],
            "dropped": queue_stats['total_dropped']
        }
        if not queue_stats['running']:
            health["status"] = "degraded"

        for name in ("server_store", "audit_store"):
            store: JsonPartitionStore = getattr(request.app.state, name)
            writable = await store.is_writable()
            health["services"][name] = "writable" if writable else "not_writable"
            if not writable:
                health["status"] = "degraded"

        return health

    # ============================================
    # SERVER EVENT INGESTION
    # ============================================

    @app.post("/api/logs/server", status_code=202)
    async def ingest_server_event(
        event: ServerEventIn,
        event_queue: EventQueue = Depends(get_event_queue),
        server_logger: ServerEventLogger = Depends(get_server_logger)
    ):
        """Queue a single server event"""
        record = server_logger.log_event(event)
        if record is None:
            raise HTTPException(status_code=422, detail="Event could not be queued")

        return {
            "success": True,
            "queued": True,
            "id": record.id,
            "queue_size": event_queue.get_stats()['current_size']
        }

    @app.post("/api/logs/server/batch", status_code=202)
    async def ingest_server_events(
        events: List[ServerEventIn],
        server_logger: ServerEventLogger = Depends(get_server_logger)
    ):
        """Queue multiple server events"""
        ids = []
        for event in events:
            record = server_logger.log_event(event)
            if record is not None:
                ids.append(record.id)

        return {
            "success": True,
            "total": len(events),
            "queued": len(ids),
            "failed": len(events) - len(ids),
            "ids": ids
        }

    @app.post("/api/logs/server/flush")
    async def flush_server_events(event_queue: EventQueue = Depends(get_event_queue)):
        """Wait until everything queued so far has been written"""
        try:
            await event_queue.join()
        except RuntimeError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"flushed": True, "queue_stats": event_queue.get_stats()}

    # ============================================
    # SERVER EVENT QUERY
    # ============================================

    @app.get("/api/logs/server")
    async def list_server_log_days(request: Request):
        """List days that have server events"""
        days = await request.app.state.server_store.list_partitions()
        return {"total": len(days), "days": days}

    @app.get("/api/logs/server/{day}")
    async def get_server_events(
        day: str,
        request: Request,
        level: Optional[LogLevel] = None,
        source: Optional[ProcessSource] = None,
        limit: int = Query(1000, ge=1, le=10000),
        server_logger: ServerEventLogger = Depends(get_server_logger)
    ):
        """Get server events recorded on a day"""
        try:
            events = await request.app.state.server_store.read_partition(day)

            if level:
                events = [e for e in events if e.get("level") == level.value]
            if source:
                events = [e for e in events if e.get("source") == source.value]

            return {"day": day, "total": len(events), "events": events[:limit]}

        except InvalidPartitionKey as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            report_route_error(server_logger, "get_server_events", e)
            raise HTTPException(status_code=500, detail=str(e))

    # ============================================
    # AUDIT EVENTS
    # ============================================

    @app.post("/api/events", status_code=201)
    async def create_audit_event(
        event: AuditEvent,
        request: Request,
        audit_logger: AuditLogger = Depends(get_audit_logger),
        server_logger: ServerEventLogger = Depends(get_server_logger)
    ):
        """Record an audit event, filling client details from the request"""
        try:
            client = client_fields(RequestContext.from_request(request))
            missing = {k: v for k, v in client.items() if getattr(event, k) is None and v is not None}
            if missing:
                event = event.model_copy(update=missing)

            if not await audit_logger.log_event(event):
                raise HTTPException(status_code=500, detail="Failed to write audit event")

            return {"success": True, "day": event.partition_key, "event": event.to_record()}

        except HTTPException:
            raise
        except Exception as e:
            report_route_error(server_logger, "create_audit_event", e)
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/events")
    async def list_audit_days(request: Request):
        """List days that have audit events"""
        days = await request.app.state.audit_store.list_partitions()
        return {"total": len(days), "days": days}

    @app.get("/api/events/{day}")
    async def get_audit_events(
        day: str,
        request: Request,
        event_type: Optional[EventType] = None,
        severity: Optional[SeverityLevel] = None,
        limit: int = Query(1000, ge=1, le=10000),
        server_logger: ServerEventLogger = Depends(get_server_logger)
    ):
        """Get audit events recorded on a day"""
        try:
            events = await request.app.state.audit_store.read_partition(day)

            if event_type:
                events = [e for e in events if e.get("eventType") == event_type.value]
            if severity:
                events = [e for e in events if e.get("severity") == severity.value]

            return {"day": day, "total": len(events), "events": events[:limit]}

        except InvalidPartitionKey as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            report_route_error(server_logger, "get_audit_events", e)
            raise HTTPException(status_code=500, detail=str(e))

    # ============================================
    # WEBHOOKS
    # ============================================

    @app.post("/api/webhooks/giscus")
    async def giscus_webhook(
        payload: Dict[str, Any],
        request: Request,
        audit_logger: AuditLogger = Depends(get_audit_logger),
        server_logger: ServerEventLogger = Depends(get_server_logger)
    ):
        """Record comment activity reported by the Giscus discussion webhook"""
        discussion = payload.get("discussion")
        comment = payload.get("comment")
        if not discussion or not comment:
            return PlainTextResponse("Not a comment event")

        try:
            action = payload.get("action")
            slug = comment_post_slug(discussion)

            if action in ("created", "edited"):
                commenter = comment.get("user") or {}
                await audit_logger.log_comment_added(
                    slug,
                    discussion.get("title") or slug,
                    str(comment["id"]),
                    EventUser(name=commenter.get("login"), email=commenter.get("email")),
                    RequestContext.from_request(request),
                )
            else:
                logger.debug(f"Ignoring giscus '{action}' action for {slug}")

            return {"success": True, "message": "Webhook processed"}

        except Exception as e:
            report_route_error(server_logger, "giscus_webhook", e)
            raise HTTPException(status_code=500, detail=f"Failed to process webhook: {e}")


app = create_app()
