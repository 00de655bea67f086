import os
import logging
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel


APP_NAME = "Dra. Clara - Asistente Médica Virtual"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def _bool_env(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _int_env(name: str, default: int) -> int:
    v = os.getenv(name, "").strip()
    return int(v) if v else default


def _float_env(name: str, default: float) -> float:
    v = os.getenv(name, "").strip()
    return float(v) if v else default


class Settings(BaseModel, frozen=True):
    mongodb_uri: str = ""
    mongodb_db_name: str = "medassistant"
    mongodb_connect_timeout: float = 10.0
    openai_api_key: str = ""
    model_name: str = "gpt-4o-mini"
    llm_provider: str = "openai"  # "openai" or "mock"
    port: int = 5000
    environment: str = "development"
    allow_logging: bool = False  # do NOT log conversation content by default

    @property
    def database_configured(self) -> bool:
        return bool(self.mongodb_uri)

    @property
    def llm_configured(self) -> bool:
        return self.llm_provider == "mock" or bool(self.openai_api_key)


def load_settings(dotenv_path: Optional[str] = None) -> Settings:
    """
    Read the process environment (plus a .env file, if any) once.
    """
    load_dotenv(dotenv_path)
    return Settings(
        mongodb_uri=os.getenv("MONGODB_URI", "").strip(),
        mongodb_db_name=os.getenv("MONGODB_DB_NAME", "medassistant").strip(),
        mongodb_connect_timeout=_float_env("MONGODB_CONNECT_TIMEOUT", 10.0),
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
        model_name=os.getenv("MODEL_NAME", "gpt-4o-mini").strip(),
        llm_provider=os.getenv("LLM_PROVIDER", "openai").strip().lower(),
        port=_int_env("PORT", 5000),
        environment=os.getenv("ENVIRONMENT", "development").strip(),
        allow_logging=_bool_env("ALLOW_LOGGING", default=False),
    )


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


def report_missing(settings: Settings) -> None:
    # Missing variables degrade the service, they never stop it.
    if not settings.mongodb_uri:
        logger.warning("MONGODB_URI no está configurada; el servidor continuará sin base de datos")
    if not settings.llm_configured:
        logger.warning("OPENAI_API_KEY no está configurada; la generación de respuestas está deshabilitada")
