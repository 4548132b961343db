"""
Chat Handler

Transport-agnostic front door for chat requests. Validates user messages,
manages sessions and history, and drives the RAG pipeline either as a single
request/response or as an ordered stream of events.
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..models import ChatMessage, QueryRequest, Role, SearchResult
from .rag_service import RAGService, StreamSink
from .session_store import SessionStore

logger = logging.getLogger(__name__)


GENERIC_ERROR = "Internal server error"


class ValidationError(Exception):
    """Raised when a user message is rejected before reaching the pipeline."""
    pass


@dataclass
class StreamEvent:
    """One event of a streamed chat response."""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'data': self.data}


async def _deliver(emit: Callable[[StreamEvent], Any], event: StreamEvent) -> None:
    try:
        result = emit(event)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Failed to emit '{event.type}' event: {e}")


class _EventSink(StreamSink):
    """Translates pipeline callbacks into stream events."""

    def __init__(self, emit: Callable[[StreamEvent], Any]):
        self.emit = emit
        self.message_id: Optional[str] = None

    async def on_start(self, message_id: str) -> None:
        self.message_id = message_id
        await _deliver(self.emit, StreamEvent('start', {'message_id': message_id}))

    async def on_sources(self, sources: List[SearchResult]) -> None:
        await _deliver(self.emit, StreamEvent('sources', {
            'message_id': self.message_id,
            'sources': [source.to_dict() for source in sources],
        }))

    async def on_chunk(self, text: str) -> None:
        await _deliver(self.emit, StreamEvent('chunk', {
            'message_id': self.message_id,
            'text': text,
        }))


class ChatHandler:
    """
    Handles chat requests with session management on top of the RAG service.

    Provides a batch entry point returning a result dictionary and a
    streaming entry point emitting ordered events.
    """

    def __init__(
        self,
        rag_service: RAGService,
        session_store: SessionStore,
        max_message_length: int = 1000,
        expose_error_details: bool = False
    ):
        """
        Initialize the chat handler.

        Args:
            rag_service: Pipeline answering the questions
            session_store: Store for sessions and history
            max_message_length: Longest accepted user message
            expose_error_details: Include exception text in error results
        """
        self.rag_service = rag_service
        self.session_store = session_store
        self.max_message_length = max_message_length
        self.expose_error_details = expose_error_details

    def validate_message(self, message: Any) -> str:
        """
        Check a user message before processing.

        Args:
            message: Raw user message

        Returns:
            The message with surrounding whitespace removed

        Raises:
            ValidationError: If the message is empty or too long
        """
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message is required and must be a non-empty string")
        if len(message) > self.max_message_length:
            raise ValidationError(
                f"Message too long (max {self.max_message_length} characters)"
            )
        return message.strip()

    def _resolve_session(self, session_id: Optional[str]) -> str:
        if session_id and self.session_store.update_session_activity(session_id):
            return session_id
        if session_id:
            logger.info(f"Session {session_id} is unknown or expired, creating a new one")
        return self.session_store.create_session()

    def _error_message(self, error: Exception) -> str:
        if self.expose_error_details:
            return f"{GENERIC_ERROR}: {error}"
        return GENERIC_ERROR

    def _record_turn(self, session_id: str, user_message: ChatMessage, answer) -> None:
        try:
            self.session_store.append_message(session_id, user_message)
            self.session_store.append_message(session_id, ChatMessage(
                id=answer.message_id,
                session_id=session_id,
                role=Role.ASSISTANT,
                text=answer.text,
            ))
        except KeyError:
            logger.warning(f"Session {session_id} expired during the request, turn not recorded")

    async def send_message(
        self,
        message: str,
        session_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Answer a chat message in one piece.

        Args:
            message: User message
            session_id: Existing session; a new one is created when missing or expired

        Returns:
            Dictionary with:
                - success: Whether an answer was produced
                - session_id, answer, sources, message_id (on success)
                - error_type, error (on failure)
        """
        try:
            text = self.validate_message(message)
        except ValidationError as e:
            return {'success': False, 'error_type': 'validation', 'error': str(e)}

        session_id = self._resolve_session(session_id)
        user_message = ChatMessage(session_id=session_id, role=Role.USER, text=text)

        try:
            answer = await self.rag_service.answer(QueryRequest(message=text, session_id=session_id))
            self._record_turn(session_id, user_message, answer)
        except Exception as e:
            logger.error(f"Chat request failed for session {session_id}: {e}")
            return {
                'success': False,
                'error_type': 'internal',
                'error': self._error_message(e),
                'session_id': session_id,
            }

        return {
            'success': True,
            'session_id': session_id,
            'answer': answer.text,
            'sources': [source.to_dict() for source in answer.sources],
            'message_id': answer.message_id,
        }

    async def stream_message(
        self,
        message: str,
        session_id: Optional[str],
        emit: Callable[[StreamEvent], Any]
    ) -> None:
        """
        Answer a chat message as a stream of events.

        Events, in order: session, user_message, start, sources, chunk*,
        complete. Any failure emits a single error event and ends the stream.

        Args:
            message: User message
            session_id: Existing session; a new one is created when missing or expired
            emit: Sync or async callable receiving each StreamEvent
        """
        try:
            text = self.validate_message(message)
        except ValidationError as e:
            await _deliver(emit, StreamEvent('error', {'error_type': 'validation', 'error': str(e)}))
            return

        session_id = self._resolve_session(session_id)
        await _deliver(emit, StreamEvent('session', {'session_id': session_id}))

        user_message = ChatMessage(session_id=session_id, role=Role.USER, text=text)
        await _deliver(emit, StreamEvent('user_message', user_message.to_dict()))

        sink = _EventSink(emit)
        try:
            answer = await self.rag_service.answer_streaming(
                QueryRequest(message=text, session_id=session_id),
                sink
            )
            self._record_turn(session_id, user_message, answer)
        except Exception as e:
            logger.error(f"Streaming chat request failed for session {session_id}: {e}")
            await _deliver(emit, StreamEvent('error', {
                'error_type': 'internal',
                'error': self._error_message(e),
                'message_id': sink.message_id,
            }))
            return

        await _deliver(emit, StreamEvent('complete', {
            'message_id': answer.message_id,
            'session_id': session_id,
            'text': answer.text,
        }))

    def get_history(self, session_id: str, limit: int = 20) -> Optional[List[Dict[str, Any]]]:
        """
        Get a session's messages, most recent first.

        Returns:
            List of message dictionaries, or None if the session is unknown
        """
        if not self.session_store.validate_session(session_id):
            return None
        return [message.to_dict() for message in self.session_store.get_messages(session_id, limit)]
