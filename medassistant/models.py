from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


Gender = Literal["masculino", "femenino", "otro"]
GENDERS = ("masculino", "femenino", "otro")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StoredModel(CamelModel):
    id: Optional[str] = Field(None, alias="_id")

    @field_validator("id", mode="before")
    @classmethod
    def _object_id_to_str(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)


# ---------
# Records
# ---------
class Patient(StoredModel):
    patient_id: str
    name: str
    age: int
    gender: Gender
    email: Optional[str] = None
    phone: Optional[str] = None
    session_id: str
    consultation_count: int = 1
    is_registered: bool = True
    created_at: datetime
    last_session: datetime


class ConversationTurn(StoredModel):
    prompt: str
    response: str
    session_id: Optional[str] = None
    patient_id: Optional[str] = None
    created_at: datetime


# ---------
# Requests / responses
# ---------
class ChatRequest(CamelModel):
    prompt: Optional[str] = None
    session_id: Optional[str] = None


class ChatResponse(BaseModel):
    response: str


class RegisterRequest(CamelModel):
    # Presence is checked by the patient store so the error stays a 400.
    patient_id: Optional[str] = None
    name: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=150)
    gender: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    session_id: Optional[str] = None


class RegisterResponse(BaseModel):
    patient: Patient
    message: str


class MongoStatus(BaseModel):
    status: str
    connected: bool


class ServerStatus(BaseModel):
    message: str
    status: str
    mongodb: MongoStatus
    environment: str
    timestamp: datetime


class HealthReport(BaseModel):
    server: str
    mongodb: str
    openai: str
    timestamp: datetime
