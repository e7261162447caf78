from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.common.constants import TypeMsg
from src.common.exceptions import DeliveryServiceError
from src.common.logger import log_error, log_info, log_warning, setup_logging
from src.config import settings
from src.config.loader import get_project_root
from src.infra.database import create_database
from src.infra.event_bus import EventBus
from src.infra.redis_client import RedisClient
from src.services.delivery_service import location_routes, notification_routes, routes
from src.shared.models.common import HealthStatus

SERVICE_NAME = "delivery_service"
SCHEMA_PATH = get_project_root() / "migrations" / "init.sql"


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    app.state.db = await create_database(settings.database, schema_path=SCHEMA_PATH)

    app.state.redis = RedisClient(settings.redis)
    await app.state.redis.connect()

    # Events are best-effort: the service starts without the broker
    app.state.event_bus = EventBus(settings.rabbitmq)
    try:
        await app.state.event_bus.connect()
    except Exception as e:
        await log_error(f"RabbitMQ unavailable at startup, domain events disabled: {e}")

    app.state.http_client = httpx.AsyncClient(timeout=settings.order_service.ORDER_SERVICE_TIMEOUT)

    await log_info(f"{SERVICE_NAME} started", type_msg=TypeMsg.INFO)
    yield

    await app.state.http_client.aclose()
    await app.state.event_bus.disconnect()
    await app.state.redis.disconnect()
    await app.state.db.disconnect()
    await log_info(f"{SERVICE_NAME} stopped", type_msg=TypeMsg.INFO)


app = FastAPI(
    title="Delivery Service",
    version=settings.system.VERSION,
    lifespan=lifespan,
)

app.include_router(routes.router, prefix="/api")
app.include_router(location_routes.router, prefix="/api")
app.include_router(notification_routes.router, prefix="/api")


@app.exception_handler(DeliveryServiceError)
async def delivery_error_handler(request: Request, exc: DeliveryServiceError):
    if exc.status_code >= 500:
        await log_error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        await log_warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"], "type": err["type"]}
        for err in exc.errors()
    ]
    await log_warning(f"{request.method} {request.url.path} -> 400: {len(errors)} validation error(s)")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Invalid request", "error": "validation_error", "errors": jsonable_encoder(errors)},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    await log_error(f"Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error", "error": "internal_error"},
    )


@app.get("/health", response_model=HealthStatus)
@app.get("/api/health", response_model=HealthStatus, include_in_schema=False)
async def health_check(request: Request) -> HealthStatus:
    checks = {
        "postgres": request.app.state.db.health_check,
        "redis": request.app.state.redis.health_check,
        "rabbitmq": request.app.state.event_bus.health_check,
    }
    dependencies = {}
    for name, check in checks.items():
        dependencies[name] = "ok" if await check() else "unavailable"

    healthy = all(value == "ok" for value in dependencies.values())
    return HealthStatus(
        service=SERVICE_NAME,
        status="healthy" if healthy else "degraded",
        version=settings.system.VERSION,
        dependencies=dependencies,
    )
