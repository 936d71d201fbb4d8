"""Turn orchestration: one inbound chat message in, one FragmentSet out.

``handle_turn`` never raises for the conversational paths. Invalid input and
provider failures come back as a single error fragment so the page always
gets something to swap in; a reply that could not be saved is still shown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from chat.core.memory import SessionMemory
from chat.core.prompt import assemble
from chat.errors import GenerationFailure, InvalidInput, MemoryWriteFailure
from chat.llm import GenerationClient
from chat.models import ChatRequest, Fragment, FragmentSet, Turn
from config.settings import Settings


logger = logging.getLogger("fragchat.orchestrator")

REPLY_FRAGMENT = "response"
ERROR_FRAGMENT = "error"
TRANSCRIPT_FRAGMENT = "recent-message-list"


@dataclass(frozen=True)
class ChatConfig:
    max_message_length: int = 4000
    # None means unbounded; caps prompt history only, applied by the memory adapter
    history_window: Optional[int] = 20
    error_message_text: str = "Sorry, I couldn't come up with a reply just now. Please try again shortly."
    invalid_message_text: str = "Please type a message before sending."
    show_transcript: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChatConfig":
        return cls(
            max_message_length=settings.max_message_length,
            history_window=settings.history_window or None,
            error_message_text=settings.error_message_text,
            invalid_message_text=settings.invalid_message_text,
            show_transcript=settings.show_transcript,
        )


class TurnOrchestrator:
    def __init__(self, memory: SessionMemory, client: GenerationClient, config: Optional[ChatConfig] = None) -> None:
        if memory is None:
            raise ValueError("memory is required")
        if client is None:
            raise ValueError("generation client is required")
        self.memory = memory
        self.client = client
        self.config = config or ChatConfig()

    def validate(self, message: str) -> str:
        if not message or not message.strip():
            raise InvalidInput("Message is empty", reason="empty")
        if len(message) > self.config.max_message_length:
            raise InvalidInput(
                f"Message is longer than {self.config.max_message_length} characters",
                reason="too_long",
            )
        return message

    def handle_turn(self, request: ChatRequest, session_key: str) -> FragmentSet:
        transaction_id = request.client_transaction_id
        try:
            message = self.validate(request.message)
        except InvalidInput as exc:
            logger.info("Rejected message (%s): len=%s", exc.reason, len(request.message or ""))
            text = self.config.invalid_message_text
            if exc.reason == "too_long":
                text = f"Messages can be at most {self.config.max_message_length} characters long."
            return FragmentSet(fragments=[self._error_fragment(text, "invalid", transaction_id)])

        history = self.memory.read_turns(session_key)
        submission = assemble(history, message)
        logger.info(
            "Chat turn: session=%s history_turns=%s message_len=%s",
            session_key,
            len(history),
            len(message),
        )

        try:
            reply = self.client.generate(submission)
        except GenerationFailure as exc:
            logger.warning("Generation failed for session=%s: %s", session_key, exc)
            return FragmentSet(
                fragments=[self._error_fragment(self.config.error_message_text, "generation", transaction_id)]
            )

        user_turn = submission[-1]
        assistant_turn = Turn(role="assistant", text=reply, sequence_no=user_turn.sequence_no + 1)
        try:
            self.memory.append_pair(session_key, user_turn, assistant_turn)
        except MemoryWriteFailure:
            # The user still sees the reply, but it is missing from history on reload.
            logger.exception(
                "Reply shown but not saved: session=%s seq=%s", session_key, user_turn.sequence_no
            )

        logger.info("Model responded: session=%s reply_len=%s", session_key, len(reply))
        reply_context = {"response": reply}
        if not self.config.show_transcript:
            # Nothing else goes out, so the reply has to carry the pending-indicator id.
            reply_context["transaction_id"] = transaction_id
        fragments: List[Fragment] = [
            Fragment(name=REPLY_FRAGMENT, template="fragments/response.html", context=reply_context)
        ]
        if self.config.show_transcript:
            fragments.append(self._transcript_fragment(session_key, transaction_id))
        return FragmentSet(fragments=fragments)

    def transcript(self, session_key: str) -> List[Turn]:
        """Every stored turn of the session; the history window only limits the prompt."""
        return self.memory.read_all(session_key)

    def _transcript_fragment(self, session_key: str, transaction_id: Optional[str]) -> Fragment:
        return Fragment(
            name=TRANSCRIPT_FRAGMENT,
            template="fragments/transcript.html",
            context={"turns": self.transcript(session_key), "transaction_id": transaction_id},
            oob=True,
        )

    @staticmethod
    def _error_fragment(text: str, kind: str, transaction_id: Optional[str]) -> Fragment:
        return Fragment(
            name=ERROR_FRAGMENT,
            template="fragments/error.html",
            context={"error": text, "kind": kind, "transaction_id": transaction_id},
        )
