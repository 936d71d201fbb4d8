from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Tuple, Union

import pytest
from fastapi.templating import Jinja2Templates
from fastapi.testclient import TestClient

from app.main import TEMPLATES_DIR, create_app
from chat.core.memory import InMemorySessionMemory
from chat.errors import MemoryWriteFailure
from chat.fragments import FragmentEncoder, FragmentRenderer
from chat.models import Turn
from chat.orchestrator import ChatConfig, TurnOrchestrator
from config.settings import Settings


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeGenerationClient:
    """Returns scripted replies and records every submitted turn list."""

    def __init__(self, replies: Optional[List[Union[str, Exception]]] = None) -> None:
        self.replies = list(replies or [])
        self.calls: List[List[Turn]] = []

    def generate(self, turns: Sequence[Turn]) -> str:
        self.calls.append(list(turns))
        if not self.replies:
            return f"reply {len(self.calls)}"
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class RecordingMemory(InMemorySessionMemory):
    def __init__(self, history_window: Optional[int] = None) -> None:
        super().__init__(history_window=history_window)
        self.appends: List[Tuple[str, Turn, Turn]] = []

    def append_pair(self, session_key: str, user_turn: Turn, assistant_turn: Turn) -> Tuple[Turn, Turn]:
        self.appends.append((session_key, user_turn, assistant_turn))
        return super().append_pair(session_key, user_turn, assistant_turn)


class BrokenMemory(RecordingMemory):
    def append_pair(self, session_key: str, user_turn: Turn, assistant_turn: Turn) -> Tuple[Turn, Turn]:
        self.appends.append((session_key, user_turn, assistant_turn))
        raise MemoryWriteFailure("disk full")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def memory() -> RecordingMemory:
    return RecordingMemory()


@pytest.fixture
def llm() -> FakeGenerationClient:
    return FakeGenerationClient()


@pytest.fixture
def config() -> ChatConfig:
    return ChatConfig(max_message_length=50, history_window=None, error_message_text="Something went wrong.")


@pytest.fixture
def orchestrator(memory: RecordingMemory, llm: FakeGenerationClient, config: ChatConfig) -> TurnOrchestrator:
    return TurnOrchestrator(memory, llm, config)


@pytest.fixture
def encoder() -> FragmentEncoder:
    templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
    return FragmentEncoder(FragmentRenderer(templates.env))


@pytest.fixture
def settings() -> Settings:
    s = Settings()
    s.app_env = "test"
    s.max_message_length = 50
    s.history_window = 0
    s.error_message_text = "Something went wrong."
    s.show_transcript = True
    s.session_cookie_name = "fragchat_session"
    s.memory_path = None
    return s


@pytest.fixture
def make_client(settings: Settings, memory: RecordingMemory, llm: FakeGenerationClient) -> Callable[..., TestClient]:
    def _make(**overrides) -> TestClient:
        app = create_app(
            settings=overrides.get("settings", settings),
            memory=overrides.get("memory", memory),
            client=overrides.get("client", llm),
        )
        return TestClient(app)

    return _make


@pytest.fixture
def http(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def make_llm() -> Callable[..., FakeGenerationClient]:
    return FakeGenerationClient


@pytest.fixture
def broken_memory() -> BrokenMemory:
    return BrokenMemory()
