import os

import pytest
from langchain_core.language_models.chat_models import BaseChatModel

os.environ.setdefault("LOG_FILE", os.devnull)


class FailingChatModel(BaseChatModel):
    """Chat model whose every call fails, standing in for an unreachable Gemini."""

    @property
    def _llm_type(self) -> str:
        return "failing"

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        raise RuntimeError("quota exceeded")


@pytest.fixture
def failing_llm():
    return FailingChatModel()
