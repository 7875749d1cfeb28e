import os
import shutil
from pathlib import Path

import pytest

TEST_DATA_DIR = Path("data-tests")

# taleweaver.app builds a default app at import time
os.environ.setdefault("DATA_DIR", str(TEST_DATA_DIR))

from taleweaver.config import ModelConfig  # noqa: E402
from taleweaver.errors import TransportFailure  # noqa: E402
from taleweaver.llm import ChatRequest  # noqa: E402
from taleweaver.storage import SaveStore  # noqa: E402


class ScriptedLLM:
    """Fake chat capability that replays a script.

    Each call pops the next entry from the stage's own script (if one was
    given) or from the shared script. A string entry is returned as the
    completion; an exception entry is raised. When the script runs out,
    `default` is returned, or TransportFailure raised if there is none.
    Every call is recorded in `calls` as (stage, request).
    """

    def __init__(
        self,
        script: list | None = None,
        by_stage: dict[str, list] | None = None,
        default: str | None = None,
    ) -> None:
        self.script = list(script or [])
        self.by_stage = {k: list(v) for k, v in (by_stage or {}).items()}
        self.default = default
        self.calls: list[tuple[str, ChatRequest]] = []

    @property
    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]

    def requests(self, stage: str) -> list[ChatRequest]:
        return [req for s, req in self.calls if s == stage]

    async def __call__(self, stage: str, request: ChatRequest) -> str:
        self.calls.append((stage, request))
        queue = self.by_stage.get(stage)
        if queue is None or not queue:
            queue = self.script
        if not queue:
            if self.default is not None:
                return self.default
            raise TransportFailure(f"Script exhausted at stage {stage!r}")
        entry = queue.pop(0)
        if isinstance(entry, BaseException):
            raise entry
        return entry


@pytest.fixture(autouse=True)
def clean_test_data():
    """Wipe data-tests/ before every test."""
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    yield
    # leave data-tests around after tests for inspection; CI can ignore it


@pytest.fixture
def model_config() -> ModelConfig:
    return ModelConfig(provider="openai", model="test-model", api_key="sk-test")


@pytest.fixture
def scripted():
    """Factory for ScriptedLLM instances."""
    return ScriptedLLM


@pytest.fixture
def save_store() -> SaveStore:
    return SaveStore(TEST_DATA_DIR)
