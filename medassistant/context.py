"""
Builds the message list sent to the completion gateway for one chat turn:

    [system] + [user, assistant] * n + [user: new prompt]

History comes from the current session and from earlier sessions of the
same patient, oldest first, capped at ``HISTORY_FETCH_LIMIT`` turns; only the
last ``HISTORY_WINDOW_MESSAGES`` messages of it are kept.
"""

from typing import Dict, List, Sequence

from medassistant.models import ConversationTurn, Patient
from medassistant.prompts import build_system_prompt
from medassistant.stores import ConversationStore, HistoryFilter

HISTORY_FETCH_LIMIT = 50
HISTORY_WINDOW_MESSAGES = 20  # 10 prompt/response exchanges


def history_messages(turns: Sequence[ConversationTurn], window: int = HISTORY_WINDOW_MESSAGES) -> List[Dict[str, str]]:
    # Each turn yields exactly two messages, so trim whole turns to keep pairs intact.
    keep = max(window // 2, 0)
    recent = list(turns)[-keep:] if keep else []
    messages: List[Dict[str, str]] = []
    for turn in recent:
        messages.append({"role": "user", "content": turn.prompt})
        messages.append({"role": "assistant", "content": turn.response})
    return messages


def assemble_messages(patient: Patient, turns: Sequence[ConversationTurn], prompt: str) -> List[Dict[str, str]]:
    messages = [{"role": "system", "content": build_system_prompt(patient)}]
    messages.extend(history_messages(turns))
    messages.append({"role": "user", "content": prompt})
    return messages


async def build_context(
    conversations: ConversationStore,
    patient: Patient,
    session_id: str,
    prompt: str,
) -> List[Dict[str, str]]:
    """
    Fetch the patient's history and assemble the full message list.

    A failing history query propagates; it is never replaced by an empty
    history.
    """
    turns = await conversations.query(
        HistoryFilter.by_session_or_patient(session_id, patient.patient_id),
        descending=False,
        limit=HISTORY_FETCH_LIMIT,
    )
    return assemble_messages(patient, turns, prompt)
