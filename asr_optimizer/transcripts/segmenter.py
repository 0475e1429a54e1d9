import logging
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ASR_MARKER = "ASR:"


class Conversation(BaseModel):
    user_queries: List[str] = Field(default_factory=list)
    asr_traces: List[str] = Field(default_factory=list)

    def is_valid(self) -> bool:
        return bool(self.user_queries) and bool(self.asr_traces)


class ProcessedData(BaseModel):
    conversations: List[Conversation] = Field(default_factory=list)


def _inner_payload(entry: dict) -> dict:
    # Voiceflow nests the interesting fields one level down: payload.payload.*
    outer = entry.get("payload")
    if not isinstance(outer, dict):
        return {}
    inner = outer.get("payload")
    return inner if isinstance(inner, dict) else {}


def _request_query(entry: dict) -> Optional[str]:
    query = _inner_payload(entry).get("query")
    if isinstance(query, str) and query:
        return query
    return None


def _asr_trace(entry: dict) -> Optional[str]:
    message = _inner_payload(entry).get("message")
    if isinstance(message, str) and ASR_MARKER in message:
        return message
    return None


def process_transcripts(entries: Iterable[Any], split_by_launch: bool = True) -> ProcessedData:
    """
    Group a flat transcript event log into conversations.

    With ``split_by_launch`` every ``launch`` entry closes the current
    conversation; without it launches are ignored and everything found is
    merged into a single conversation. A conversation is only emitted when it
    holds at least one user query and at least one ASR trace.
    """
    conversations: List[Conversation] = []
    current = Conversation()

    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        entry_type = entry.get("type")
        if split_by_launch and entry_type == "launch":
            if current.is_valid():
                conversations.append(current)
            current = Conversation()
        elif entry_type == "request":
            query = _request_query(entry)
            if query:
                current.user_queries.append(query)
        elif entry_type == "debug":
            trace = _asr_trace(entry)
            if trace:
                current.asr_traces.append(trace)

    if current.is_valid():
        conversations.append(current)

    if not split_by_launch and len(conversations) > 1:
        combined = Conversation(
            user_queries=[q for conv in conversations for q in conv.user_queries],
            asr_traces=[t for conv in conversations for t in conv.asr_traces],
        )
        return ProcessedData(conversations=[combined])

    conversations = [conv for conv in conversations if conv.is_valid()]
    logger.info(f"Processed {len(conversations)} valid conversations")
    return ProcessedData(conversations=conversations)
