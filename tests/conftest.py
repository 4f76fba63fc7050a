import json

import pytest


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests with no network access")


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=None, content=b""):
        self.status_code = status_code
        self._json_data = json_data
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text
        self.content = content

    def json(self):
        if self._json_data is None:
            raise ValueError("Invalid JSON")
        return self._json_data


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def token_raw_config():
    return {
        "portalUrl": "https://example.bitrix24.com/",
        "accessToken": "old-token",
        "refreshToken": "refresh-1",
        "clientId": "app.123",
        "clientSecret": "secret",
    }


@pytest.fixture
def webhook_url():
    return "https://example.bitrix24.com/rest/1/abc123/"
