import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from medassistant import __version__
from medassistant.config import APP_NAME, Settings, configure_logging, load_settings, report_missing
from medassistant.database import CONNECTED, Database
from medassistant.errors import ServiceError
from medassistant.gateway import CompletionGateway
from medassistant.models import HealthReport, MongoStatus, ServerStatus
from medassistant.routes import router
from medassistant.stores import ConversationStore, PatientStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    database: Database = app.state.database
    logger.info("Iniciando %s (entorno: %s)", APP_NAME, settings.environment)

    if database.configured:
        # First connect is best effort; requests retry through ensure_ready().
        try:
            await app.state.patients.ensure_indexes()
        except ServiceError as e:
            logger.warning("%s; el servidor continuará sin base de datos: %s", e.message, e.details)
        except PyMongoError as e:
            logger.warning("No se pudieron crear los índices: %s", e)
    yield

    database.close()
    await app.state.gateway.close()
    logger.info("Servidor detenido")


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    gateway: Optional[CompletionGateway] = None,
) -> FastAPI:
    settings = settings or load_settings()
    report_missing(settings)

    app = FastAPI(title=APP_NAME, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database or Database(
        settings.mongodb_uri,
        settings.mongodb_db_name,
        connect_timeout=settings.mongodb_connect_timeout,
    )
    app.state.patients = PatientStore(app.state.database)
    app.state.conversations = ConversationStore(app.state.database)
    app.state.gateway = gateway or CompletionGateway(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": "Solicitud inválida", "details": details})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Error no controlado en %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Error interno del servidor", "details": str(exc)})

    app.include_router(router)

    @app.get("/", response_model=ServerStatus)
    async def index(request: Request):
        state = request.app.state
        return ServerStatus(
            message="API de la Dra. Clara funcionando correctamente",
            status="OpenAI configurado" if state.gateway.configured else "OpenAI no configurado",
            mongodb=MongoStatus(status=state.database.state, connected=state.database.state == CONNECTED),
            environment=state.settings.environment,
            timestamp=datetime.now(timezone.utc),
        )

    @app.get("/health", response_model=HealthReport)
    async def health(request: Request):
        state = request.app.state
        report = HealthReport(
            server="OK",
            mongodb="OK" if state.database.connected else "ERROR",
            openai="OK" if state.gateway.configured else "ERROR",
            timestamp=datetime.now(timezone.utc),
        )
        healthy = report.mongodb == "OK" and report.openai == "OK"
        return JSONResponse(status_code=200 if healthy else 503, content=report.model_dump(mode="json"))

    return app


def run() -> None:
    import uvicorn

    configure_logging()
    settings = load_settings()
    logger.info("Servidor escuchando en el puerto %d", settings.port)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
