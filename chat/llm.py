from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder
from langchain_google_genai import ChatGoogleGenerativeAI

from chat.errors import GenerationFailure
from chat.models import Turn
from config.settings import get_settings


logger = logging.getLogger("fragchat.llm")


class GenerationClient(Protocol):
    def generate(self, turns: Sequence[Turn]) -> str:
        ...


def build_llm() -> ChatGoogleGenerativeAI:
    settings = get_settings()
    if not settings.google_api_key:
        raise RuntimeError(
            "GOOGLE_API_KEY not set. Please configure it in environment or .env"
        )

    return ChatGoogleGenerativeAI(
        model=settings.gemini_model,
        google_api_key=settings.google_api_key,
        temperature=settings.temperature,
        top_p=settings.top_p,
        timeout=settings.model_timeout,
        max_retries=settings.model_max_retries,
    )


def build_prompt(system_prompt: Optional[str] = None) -> ChatPromptTemplate:
    messages: List[Any] = []
    if system_prompt:
        # A message object, not a template string, so braces in the prompt stay literal.
        messages.append(SystemMessage(content=system_prompt))
    messages.append(MessagesPlaceholder("chat_history"))
    return ChatPromptTemplate.from_messages(messages)


def to_lc_messages(turns: Sequence[Turn]) -> List[BaseMessage]:
    messages: List[BaseMessage] = []
    for turn in turns:
        if turn.role == "assistant":
            messages.append(AIMessage(content=turn.text))
        else:
            messages.append(HumanMessage(content=turn.text))
    return messages


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts: List[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text") or "")
    return "".join(parts)


class LangChainGenerationClient:
    """Turns a conversation into one reply using a LangChain chat model.

    The model is built on first use so the app can start (and serve the page
    shell) without provider credentials.
    """

    def __init__(self, llm: Optional[BaseChatModel] = None, system_prompt: Optional[str] = None) -> None:
        self._llm = llm
        self._prompt = build_prompt(system_prompt)

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = build_llm()
        return self._llm

    def generate(self, turns: Sequence[Turn]) -> str:
        try:
            chain = self._prompt | self.llm
            result = chain.invoke({"chat_history": to_lc_messages(turns)})
        except Exception as exc:
            raise GenerationFailure(f"Chat model call failed: {exc}") from exc

        text = _content_text(getattr(result, "content", result))
        if not text.strip():
            raise GenerationFailure("Chat model returned an empty reply")
        logger.debug("Chat model replied with %s chars", len(text))
        return text
