"""
Patient and conversation persistence on top of MongoDB.

Documents use the same camelCase field names the API returns, so a stored
document validates directly into its pydantic model.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from medassistant.database import CONVERSATIONS, PATIENTS, Database
from medassistant.errors import ValidationError
from medassistant.models import GENDERS, ConversationTurn, Patient

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# ---------
# History filters
# ---------
class FilterKind(enum.Enum):
    ALL = "all"
    SESSION = "session"
    PATIENT = "patient"
    SESSION_OR_PATIENT = "session_or_patient"


@dataclass(frozen=True)
class HistoryFilter:
    kind: FilterKind
    session_id: Optional[str] = None
    patient_id: Optional[str] = None

    @classmethod
    def everything(cls) -> "HistoryFilter":
        return cls(FilterKind.ALL)

    @classmethod
    def by_session(cls, session_id: str) -> "HistoryFilter":
        return cls(FilterKind.SESSION, session_id=session_id)

    @classmethod
    def by_patient(cls, patient_id: str) -> "HistoryFilter":
        return cls(FilterKind.PATIENT, patient_id=patient_id)

    @classmethod
    def by_session_or_patient(cls, session_id: str, patient_id: str) -> "HistoryFilter":
        return cls(FilterKind.SESSION_OR_PATIENT, session_id=session_id, patient_id=patient_id)

    @classmethod
    def from_params(
        cls,
        session_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        include_all_sessions: Optional[str] = None,
    ) -> "HistoryFilter":
        """
        Pick the history listing filter from optional query parameters.

        ``includeAllSessions=true`` with a patient id wins over a session id;
        with neither id the listing is unfiltered.
        """
        if include_all_sessions == "true" and patient_id:
            return cls.by_patient(patient_id)
        if session_id:
            return cls.by_session(session_id)
        return cls.everything()

    def to_query(self) -> Dict[str, Any]:
        if self.kind is FilterKind.SESSION:
            return {"sessionId": self.session_id}
        if self.kind is FilterKind.PATIENT:
            return {"patientId": self.patient_id}
        if self.kind is FilterKind.SESSION_OR_PATIENT:
            return {"$or": [{"sessionId": self.session_id}, {"patientId": self.patient_id}]}
        return {}


# ---------
# Patients
# ---------
class PatientStore:
    def __init__(self, database: Database, clock: Clock = utcnow):
        self.database = database
        self.clock = clock
        self._indexed = False

    async def ensure_indexes(self) -> None:
        patients = await self.database.collection(PATIENTS)
        await self._create_indexes(patients)

    async def _create_indexes(self, patients) -> None:
        # create_index is idempotent and returns once the index exists.
        await patients.create_index("patientId", unique=True)
        await patients.create_index("sessionId")
        self._indexed = True

    async def find_by_patient_id(self, patient_id: str) -> Optional[Patient]:
        patients = await self.database.collection(PATIENTS)
        doc = await patients.find_one({"patientId": patient_id})
        return Patient.model_validate(doc) if doc else None

    async def find_by_session_id(self, session_id: str) -> Optional[Patient]:
        # sessionId is not unique; with several matches the store's natural order decides.
        patients = await self.database.collection(PATIENTS)
        doc = await patients.find_one({"sessionId": session_id})
        return Patient.model_validate(doc) if doc else None

    async def upsert(
        self,
        patient_id: Optional[str],
        name: Optional[str],
        age: Optional[int],
        gender: Optional[str],
        session_id: Optional[str],
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Patient:
        """
        Register a new patient or start a new session for a known one.

        An existing record only gets a new ``sessionId``, a fresh
        ``lastSession`` and ``consultationCount + 1``; the demographic and
        contact fields sent with the request are ignored for it.
        """
        if any(_missing(v) for v in (patient_id, name, age, gender, session_id)):
            raise ValidationError("Faltan campos obligatorios")
        if gender not in GENDERS:
            raise ValidationError(
                "Género no válido",
                details=f"'{gender}' no es uno de: {', '.join(GENDERS)}",
            )

        patients = await self.database.collection(PATIENTS)
        if not self._indexed:
            # The store may have been unreachable at startup.
            await self._create_indexes(patients)

        existing = await self._start_new_session(patients, patient_id, session_id)
        if existing is not None:
            return existing

        now = self.clock()
        doc = {
            "patientId": patient_id,
            "name": name,
            "age": age,
            "gender": gender,
            "email": email,
            "phone": phone,
            "sessionId": session_id,
            "consultationCount": 1,
            "isRegistered": True,
            "createdAt": now,
            "lastSession": now,
        }
        try:
            result = await patients.insert_one(doc)
        except DuplicateKeyError:
            # Lost a registration race for the same patientId.
            existing = await self._start_new_session(patients, patient_id, session_id)
            if existing is None:
                raise
            return existing

        doc["_id"] = result.inserted_id
        logger.info("Paciente %s registrado", patient_id)
        return Patient.model_validate(doc)

    async def _start_new_session(self, patients, patient_id: str, session_id: str) -> Optional[Patient]:
        doc = await patients.find_one_and_update(
            {"patientId": patient_id},
            {
                "$set": {"sessionId": session_id, "lastSession": self.clock()},
                "$inc": {"consultationCount": 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            return None
        logger.info("Paciente %s: consulta #%d", patient_id, doc["consultationCount"])
        return Patient.model_validate(doc)


# ---------
# Conversations
# ---------
class ConversationStore:
    def __init__(self, database: Database, clock: Clock = utcnow):
        self.database = database
        self.clock = clock

    async def append(
        self,
        prompt: str,
        response: str,
        session_id: Optional[str] = None,
        patient_id: Optional[str] = None,
    ) -> ConversationTurn:
        if _missing(prompt) or _missing(response):
            raise ValidationError("El prompt y la respuesta son requeridos")

        conversations = await self.database.collection(CONVERSATIONS)
        doc = {
            "prompt": prompt,
            "response": response,
            "sessionId": session_id,
            "patientId": patient_id,
            "createdAt": self.clock(),
        }
        result = await conversations.insert_one(doc)
        doc["_id"] = result.inserted_id
        return ConversationTurn.model_validate(doc)

    async def query(
        self,
        history_filter: HistoryFilter,
        descending: bool = True,
        limit: int = 50,
    ) -> List[ConversationTurn]:
        conversations = await self.database.collection(CONVERSATIONS)
        direction = DESCENDING if descending else ASCENDING
        # _id breaks ties between turns written within the same millisecond
        cursor = (
            conversations.find(history_filter.to_query())
            .sort([("createdAt", direction), ("_id", direction)])
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        return [ConversationTurn.model_validate(d) for d in docs]
