from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.core.rate_limit import limiter
from app.features.permissions.bootstrap import bootstrap_permissions
from app.features.permissions.cache import QueryPermissionCache
from app.features.permissions.exceptions import (
    InvalidFieldDeclaration,
    PermissionNotFound,
    PolicyError,
    StorageError,
    UnknownEntityType,
    UnknownRole,
    UnmodeledOperation,
)
from app.features.permissions.policy import load_policy
from app.features.permissions.roles import ensure_roles
from app.features.permissions.routes import router as permission_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Field Permissions",
    description="Attribute-level permission engine for entity types and their fields",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter
app.state.query_permission_cache = QueryPermissionCache() if config.QUERY_PERMISSION_CACHE else None
app.state.role_registry = None


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


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.exception_handler(UnmodeledOperation)
async def unmodeled_operation_handler(_request: Request, exc: UnmodeledOperation):
    # A broken part of the API, not an access decision
    log.error("Unmodeled operation %s", exc.operation)
    return JSONResponse({"error": str(exc)}, status_code=500)


@app.exception_handler(StorageError)
async def storage_error_handler(_request: Request, exc: StorageError):
    log.error("Storage error: %s", exc)
    return JSONResponse({"error": "Permission store unavailable"}, status_code=503)


@app.exception_handler(PermissionNotFound)
async def permission_not_found_handler(_request: Request, exc: PermissionNotFound):
    return JSONResponse({"error": str(exc)}, status_code=404)


async def bad_request_handler(_request: Request, exc: Exception):
    return JSONResponse({"error": str(exc)}, status_code=400)


for _exc_class in (UnknownRole, UnknownEntityType, PolicyError, InvalidFieldDeclaration):
    app.add_exception_handler(_exc_class, bad_request_handler)


@app.on_event("startup")
async def startup():
    """Create tables, then bootstrap the permission catalog. Any failure aborts startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")

    async with AsyncSessionLocal() as db:
        if config.BOOTSTRAP_ON_STARTUP:
            policy = load_policy(config.PERMISSIONS_FILE, required=False)
            result = await bootstrap_permissions(db, policy=policy, cache=app.state.query_permission_cache)
            app.state.role_registry = result.registry
        else:
            log.warning("Permission bootstrap disabled")
            app.state.role_registry = await ensure_roles(db)


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Field Permissions API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "caching": app.state.query_permission_cache is not None,
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "permissions_ready": app.state.role_registry is not None}


# Permission routes
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
