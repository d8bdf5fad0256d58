import pytest

from dndbot.config import Settings
from dndbot.storage import Storage


class ScriptedClient:
    """Return canned responses in order and record every call.

    An exception instance in the script is raised instead of returned. Once
    the script is used up, `default` is returned.
    """

    def __init__(self, responses=(), default="ok"):
        self.responses = list(responses)
        self.default = default
        self.calls = []  # list of (system, user) tuples

    async def send(self, system, user):
        self.calls.append((system, user))
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, BaseException):
            raise response
        return response

    @property
    def call_count(self):
        return len(self.calls)

    def user(self, index):
        return self.calls[index][1]


@pytest.fixture
def scripted():
    """Factory for ScriptedClient instances."""
    return ScriptedClient


@pytest.fixture
def storage(tmp_path):
    return Storage(tmp_path / "data")


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every file path into tmp_path, rate limit off."""
    return Settings(
        api_key="test-key",
        data_dir=tmp_path / "data",
        output_dir=tmp_path / "outputs",
        setting_file=tmp_path / "SETTING.md",
        style_file=tmp_path / "STYLE.md",
        rate_limit=0,
    )
