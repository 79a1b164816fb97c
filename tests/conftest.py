import os
import sys
# Ensure project root is importable for tests, regardless of runner CWD
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from typing import Any, Dict, List, Optional

import pytest

import git_jira_timelog.core as mod

JIRA_ENV_VARS = (
    "JIRA_BASE_URL",
    "JIRA_EMAIL",
    "JIRA_API_TOKEN",
    "JIRA_PROJECT_KEY",
    "JIRA_VERIFY_SSL",
    "JIRA_CA_BUNDLE",
    "JIRA_TIMEOUT",
)

_BAD_JSON = object()


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        json_data: Optional[Any] = None,
        text: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self._json_data = json_data
        if text is None:
            text = "" if json_data is None or json_data is _BAD_JSON else "{...}"
        self.text = text
        self.headers = headers or {}

    def json(self):
        if self._json_data is _BAD_JSON:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._json_data


def bad_json_response(status: int = 200, text: str = "<html>oops</html>") -> FakeResponse:
    return FakeResponse(status_code=status, json_data=_BAD_JSON, text=text)


class FakeSession:
    """Records calls and replays canned responses (or raises canned exceptions)."""

    def __init__(self, get_response=None, post_response=None):
        self.get_response = get_response
        self.post_response = post_response
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def _reply(self, canned):
        if isinstance(canned, Exception):
            raise canned
        return canned

    def get(self, url, headers=None, timeout=None):
        self.calls.append({"method": "GET", "url": url, "headers": headers, "timeout": timeout})
        return self._reply(self.get_response)

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"method": "POST", "url": url, "json": json, "headers": headers, "timeout": timeout})
        return self._reply(self.post_response)

    def close(self):
        self.closed = True

    @property
    def methods(self) -> List[str]:
        return [c["method"] for c in self.calls]


@pytest.fixture
def config():
    return mod.JiraConfig(
        base_url="https://example.atlassian.net",
        email="user@example.com",
        token="token123",
    )


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every JIRA_* variable and stop main() from loading a real .env file."""
    for name in JIRA_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(mod, "local_env_file", lambda: "")
    monkeypatch.setattr(mod, "load_dotenv", lambda *a, **k: False)
    yield monkeypatch


@pytest.fixture
def jira_env(clean_env):
    clean_env.setenv("JIRA_BASE_URL", "https://example.atlassian.net/")
    clean_env.setenv("JIRA_EMAIL", "user@example.com")
    clean_env.setenv("JIRA_API_TOKEN", "token123")
    yield clean_env


@pytest.fixture
def tmp_config_file(tmp_path):
    """Create a minimal valid config.ini and return its path."""
    p = tmp_path / "config.ini"
    p.write_text(
        "[jira]\n"
        "base_url = https://ini.atlassian.net/\n"
        "email = ini.user@example.com\n"
        "api_token = initoken\n"
        "project_key = abc\n"
        "verify_ssl = false\n"
        "timeout = 30\n",
        encoding="utf-8",
    )
    return p


# Expose utilities for tests
__all__ = ["FakeResponse", "FakeSession", "bad_json_response"]
