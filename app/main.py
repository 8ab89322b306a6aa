from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.core.errors import VulnTrackError
from app.core.services import build_services
from app.features.assets.routes import router as asset_router
from app.features.audit.routes import router as audit_router
from app.features.dashboard.routes import router as dashboard_router
from app.features.notifications.routes import router as notification_router
from app.features.permissions.routes import router as permission_router
from app.features.permissions.seed import sync_catalogue
from app.features.projects.routes import router as project_router
from app.features.reminders.routes import router as reminder_router
from app.features.system.routes import router as system_router
from app.features.users.routes import router as user_router
from app.features.vulnerabilities.routes import router as vulnerability_router
from app.features.users.dependencies import get_authorization_header
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="VulnTrack Backend",
    description="Vulnerability management API: projects, assets, vulnerability lifecycle and deadline reminders",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
app.state.limiter = limiter
app.state.services = build_services(AsyncSessionLocal)


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(VulnTrackError)
async def domain_exception_handler(request: Request, exc: VulnTrackError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        log.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database and start background workers."""
    log.info("Initializing database...")
    await init_db()
    async with AsyncSessionLocal() as db:
        await sync_catalogue(db)
    log.info("Database initialized successfully")
    await app.state.services.start()


@app.on_event("shutdown")
async def shutdown():
    await app.state.services.stop()


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "VulnTrack Backend API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "All endpoints except / and /health require a Bearer token in the Authorization header",
        },
        "features": {
            "users": "Users with one system role each",
            "permissions": "Static role to permission code catalogue",
            "projects": "Projects with owners and members",
            "assets": "Assets, optionally scoped to a project",
            "vulnerabilities": "Vulnerability lifecycle: submit, assign, fix, retest, audit, ignore",
            "notifications": "In-app notifications for lifecycle events",
            "audit_logs": "Append-only record of every change",
            "reminders": "Daily fix-deadline reminders",
            "dashboard": "Scoped summary counts",
            "system": "Runtime configuration and instance-wide statistics",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    services = app.state.services
    return {
        "status": "healthy",
        "scheduler_running": services.scheduler.scheduler.running,
        "pending_notifications": services.notifications.pending,
    }


# Include routers
app.include_router(user_router, prefix="/users", tags=["users"])
# Alias for singular form (if frontend uses /user/me)
app.include_router(user_router, prefix="/user", tags=["users"], include_in_schema=False)

app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
app.include_router(project_router, prefix="/projects", tags=["projects"])
app.include_router(asset_router, prefix="/assets", tags=["assets"])
app.include_router(vulnerability_router, prefix="/vulnerabilities", tags=["vulnerabilities"])
app.include_router(notification_router, prefix="/notifications", tags=["notifications"])
app.include_router(audit_router, prefix="/audit-logs", tags=["audit"])
app.include_router(reminder_router, prefix="/reminders", tags=["reminders"])
app.include_router(dashboard_router, prefix="/dashboard", tags=["dashboard"])
app.include_router(system_router, prefix="/system", tags=["system"])
