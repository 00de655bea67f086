import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Type

from fastapi import APIRouter, Depends, Query, Request
from openai import OpenAIError
from pymongo.errors import PyMongoError

from medassistant.config import Settings
from medassistant.context import build_context
from medassistant.errors import ConfigurationError, NotFoundError, ServiceError, UpstreamError, ValidationError
from medassistant.gateway import CompletionGateway
from medassistant.models import (
    ChatRequest,
    ChatResponse,
    ConversationTurn,
    Patient,
    RegisterRequest,
    RegisterResponse,
)
from medassistant.prompts import greeting
from medassistant.stores import ConversationStore, HistoryFilter, PatientStore

logger = logging.getLogger(__name__)

HISTORY_LIST_LIMIT = 50

router = APIRouter(prefix="/chat", tags=["chat"])


# ---------
# Dependencies
# ---------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_patients(request: Request) -> PatientStore:
    return request.app.state.patients


def get_conversations(request: Request) -> ConversationStore:
    return request.app.state.conversations


def get_gateway(request: Request) -> CompletionGateway:
    return request.app.state.gateway


# ---------
# Helpers
# ---------
@contextmanager
def upstream_errors(message: str, *also: Type[Exception]) -> Iterator[None]:
    """
    Re-raise store/model failures as an UpstreamError with the endpoint's
    fixed message and the underlying cause as details.
    """
    try:
        yield
    except (PyMongoError, OpenAIError, UpstreamError, ConfigurationError) + also as e:
        if isinstance(e, ServiceError):
            details = f"{e.message}: {e.details}" if e.details else e.message
        else:
            details = str(e)
        logger.error("%s: %s", message, details)
        raise UpstreamError(message, details=details) from e


def _excerpt(text: str, size: int = 80) -> str:
    return text if len(text) <= size else text[:size] + "..."


# ---------
# Routes
# ---------
@router.post("", response_model=ChatResponse)
@router.post("/", response_model=ChatResponse, include_in_schema=False)
async def generate_chat_response(
    body: ChatRequest,
    settings: Settings = Depends(get_settings),
    patients: PatientStore = Depends(get_patients),
    conversations: ConversationStore = Depends(get_conversations),
    gateway: CompletionGateway = Depends(get_gateway),
):
    if not body.prompt:
        raise ValidationError("El prompt es requerido")
    if not body.session_id:
        raise ValidationError("SessionId es requerido")

    with upstream_errors("Error al procesar la solicitud"):
        patient = await patients.find_by_session_id(body.session_id)
    if patient is None:
        raise NotFoundError("Paciente no registrado. Por favor complete el registro primero.", status_code=401)

    if not gateway.configured:
        raise ConfigurationError(
            "No se ha configurado correctamente la API de OpenAI",
            details="Error interno del servidor al configurar OpenAI",
        )

    # Persisting an empty completion is a failed turn, not a client error.
    with upstream_errors("Error al procesar la solicitud", ValidationError):
        messages = await build_context(conversations, patient, body.session_id, body.prompt)
        response = await gateway.complete(messages)
        await conversations.append(
            body.prompt,
            response,
            session_id=body.session_id,
            patient_id=patient.patient_id,
        )

    if settings.allow_logging:
        # NOTE: conversation content is PHI; keep off by default
        logger.info("CHAT_TURN %s %r -> %r", patient.patient_id, _excerpt(body.prompt), _excerpt(response))
    else:
        logger.info("Turno de chat guardado para el paciente %s (%d mensajes de contexto)",
                    patient.patient_id, len(messages))
    return ChatResponse(response=response)


@router.get("/history", response_model=List[ConversationTurn])
async def get_conversation_history(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    patient_id: Optional[str] = Query(None, alias="patientId"),
    include_all_sessions: Optional[str] = Query(None, alias="includeAllSessions"),
    conversations: ConversationStore = Depends(get_conversations),
):
    history_filter = HistoryFilter.from_params(session_id, patient_id, include_all_sessions)
    with upstream_errors("Error al obtener el historial de conversaciones"):
        return await conversations.query(history_filter, descending=True, limit=HISTORY_LIST_LIMIT)


@router.post("/register", response_model=RegisterResponse)
async def register_patient(body: RegisterRequest, patients: PatientStore = Depends(get_patients)):
    with upstream_errors("Error al registrar paciente"):
        patient = await patients.upsert(
            patient_id=body.patient_id,
            name=body.name,
            age=body.age,
            gender=body.gender,
            session_id=body.session_id,
            email=body.email,
            phone=body.phone,
        )
    return RegisterResponse(patient=patient, message=greeting(body.name))


@router.get("/find/{patient_id}", response_model=Patient)
async def find_patient(patient_id: str, patients: PatientStore = Depends(get_patients)):
    with upstream_errors("Error al buscar paciente"):
        patient = await patients.find_by_patient_id(patient_id)
    if patient is None:
        raise NotFoundError("Paciente no encontrado")
    return patient


@router.get("/patient/{session_id}", response_model=Patient)
async def get_patient_by_session(session_id: str, patients: PatientStore = Depends(get_patients)):
    with upstream_errors("Error al obtener paciente"):
        patient = await patients.find_by_session_id(session_id)
    if patient is None:
        raise NotFoundError("Paciente no registrado")
    return patient


@router.get("/patient/{patient_id}/history", response_model=List[ConversationTurn])
async def get_patient_history(patient_id: str, conversations: ConversationStore = Depends(get_conversations)):
    with upstream_errors("Error al obtener el historial de conversaciones"):
        return await conversations.query(
            HistoryFilter.by_patient(patient_id), descending=True, limit=HISTORY_LIST_LIMIT
        )
