import pytest
import requests
from unittest.mock import MagicMock

from workflow_connectors.bitrix24.client import Bitrix24Client, parse_json_argument
from workflow_connectors.bitrix24.exceptions import (
    Bitrix24DownloadError,
    CredentialConfigError,
    RequestConfigError,
)
from workflow_connectors.bitrix24.schema import (
    AuthKind,
    RequestAuth,
    RequestOptions,
    Success,
    WebhookCredential,
)


def _mock_transport(client):
    client.executor.transport.session.request = MagicMock()
    client.executor.transport.session.get = MagicMock()
    client.executor.refresher.session.get = MagicMock()
    return client.executor.transport.session.request


@pytest.fixture
def webhook_client(webhook_url):
    client = Bitrix24Client.from_config("webhook", {"webhookUrl": webhook_url})
    _mock_transport(client)
    return client


@pytest.fixture
def oauth_client(token_raw_config, webhook_url):
    client = Bitrix24Client.from_config("oAuth2", dict(token_raw_config, webhookUrl=webhook_url))
    _mock_transport(client)
    return client


@pytest.mark.unit
def test_parse_json_argument_accepts_dict_and_string():
    assert parse_json_argument({"a": 1}) == {"a": 1}
    assert parse_json_argument('{"filter": {"ID": 2}}') == {"filter": {"ID": 2}}
    assert parse_json_argument("") == {}
    assert parse_json_argument(None) == {}


@pytest.mark.unit
@pytest.mark.parametrize("value", ["{not json", "[1, 2]", "42"])
def test_parse_json_argument_rejects_non_objects(value):
    with pytest.raises(RequestConfigError) as e:
        parse_json_argument(value, "body")

    assert "body" in str(e.value)


@pytest.mark.unit
def test_from_config_resolves_credential_and_fallback(oauth_client, webhook_url):
    assert oauth_client.active_kind is AuthKind.OAUTH2
    assert oauth_client.webhook_credential == WebhookCredential(webhook_url=webhook_url)


@pytest.mark.unit
def test_from_config_rejects_unknown_kind():
    with pytest.raises(CredentialConfigError):
        Bitrix24Client.from_config("basic", {})


@pytest.mark.unit
def test_from_profile_uses_profile_defaults(tmp_path, fake_response):
    profile = tmp_path / "bitrix24.yaml"
    profile.write_text(
        "auth_type: apiKey\n"
        "credentials:\n"
        "  portalUrl: https://example.bitrix24.com\n"
        "  accessToken: key-1\n"
        "  webhookUrl: https://example.bitrix24.com/rest/1/abc\n"
        "options:\n"
        "  allow_webhook_fallback: true\n",
        encoding="utf-8",
    )
    client = Bitrix24Client.from_profile(profile)
    request = _mock_transport(client)
    request.side_effect = [fake_response(401, text=""), fake_response(200, {"result": True})]

    result = client.execute("user.current")

    assert client.active_kind is AuthKind.APIKEY
    assert client.defaults.allow_webhook_fallback is True
    assert result.ok
    assert request.call_args_list[1].args[1] == "https://example.bitrix24.com/rest/1/abc/user.current"


@pytest.mark.unit
def test_call_options_override_defaults(oauth_client, fake_response):
    request = oauth_client.executor.transport.session.request
    request.return_value = fake_response(200, {"result": True})

    oauth_client.execute("im.notify", options=RequestOptions(auth=RequestAuth.WEBHOOK))

    assert request.call_args.args[1] == "https://example.bitrix24.com/rest/1/abc123/im.notify"


@pytest.mark.unit
def test_refreshed_token_is_remembered(oauth_client, fake_response):
    request = oauth_client.executor.transport.session.request
    request.side_effect = [
        fake_response(401, {"error": "expired_token", "error_description": "expired"}),
        fake_response(200, {"result": {"ID": 1}}),
        fake_response(200, {"result": {"ID": 2}}),
    ]
    oauth_client.executor.refresher.session.get.return_value = fake_response(
        200, {"access_token": "new-token", "refresh_token": "refresh-2"}
    )

    first = oauth_client.execute("user.current")
    oauth_client.execute("user.current")

    assert first.refreshed_token.access_token == "new-token"
    assert oauth_client.refreshed_token.refresh_token == "refresh-2"
    assert oauth_client.credential.access_token == "new-token"
    assert oauth_client.credential.refresh_token == "refresh-2"
    assert request.call_args_list[2].kwargs["params"]["auth"] == "new-token"


@pytest.mark.unit
def test_forced_webhook_after_refresh_uses_webhook_url(oauth_client, fake_response):
    request = oauth_client.executor.transport.session.request
    request.side_effect = [
        fake_response(401, {"error": "expired_token", "error_description": "expired"}),
        fake_response(200, {"result": {"ID": 1}}),
        fake_response(200, {"result": True}),
    ]
    oauth_client.executor.refresher.session.get.return_value = fake_response(
        200, {"access_token": "new-token", "refresh_token": "refresh-2"}
    )

    oauth_client.execute("user.current")
    result = oauth_client.execute("im.notify", options=RequestOptions(auth=RequestAuth.WEBHOOK))

    assert result.ok
    last = request.call_args_list[2]
    assert last.args[1] == "https://example.bitrix24.com/rest/1/abc123/im.notify"
    assert "auth" not in last.kwargs["params"]


@pytest.mark.unit
def test_second_refresh_sends_latest_refresh_token(oauth_client, fake_response):
    expired = {"error": "expired_token", "error_description": "expired"}
    request = oauth_client.executor.transport.session.request
    request.side_effect = [
        fake_response(401, expired),
        fake_response(200, {"result": 1}),
        fake_response(401, expired),
        fake_response(200, {"result": 2}),
    ]
    grant = oauth_client.executor.refresher.session.get
    grant.side_effect = [
        fake_response(200, {"access_token": "a2", "refresh_token": "r2"}),
        fake_response(200, {"access_token": "a3", "refresh_token": "r3"}),
    ]

    first = oauth_client.execute("user.current")
    second = oauth_client.execute("user.current")

    assert first.ok and second.ok
    sent = [c.kwargs["params"]["refresh_token"] for c in grant.call_args_list]
    assert sent == ["refresh-1", "r2"]
    auths = [c.kwargs["params"]["auth"] for c in request.call_args_list]
    assert auths == ["old-token", "a2", "a2", "a3"]
    assert oauth_client.refreshed_token.access_token == "a3"
    assert oauth_client.credential.refresh_token == "r3"


@pytest.mark.unit
def test_collect_all_pages_through_client(webhook_client, fake_response):
    webhook_client.executor.transport.session.request.side_effect = [
        fake_response(200, {"result": {"items": [{"id": 1}, {"id": 2}]}}),
        fake_response(200, {"result": {"items": []}}),
    ]

    items = webhook_client.collect_all_pages("crm.item.list", query={"entityTypeId": 2})

    assert items == [{"id": 1}, {"id": 2}]


@pytest.mark.unit
def test_execute_many_keeps_going_after_failure(webhook_client, fake_response):
    webhook_client.executor.transport.session.request.side_effect = [
        fake_response(400, {"error": "ERROR_CORE", "error_description": "bad"}),
        fake_response(200, {"result": 5}),
    ]

    results = webhook_client.execute_many(
        [
            {"endpoint": "crm.deal.add", "body": {"fields": {}}},
            {"endpoint": "crm.deal.add", "body": {"fields": {"TITLE": "x"}}, "options": {"auth": "auto"}},
        ]
    )

    assert [r.ok for r in results] == [False, True]
    assert results[1].payload == {"result": 5}


@pytest.mark.unit
def test_check_connection(webhook_client, fake_response):
    request = webhook_client.executor.transport.session.request
    request.return_value = fake_response(200, {"result": {"ID": "1"}})
    assert webhook_client.check_connection() is True
    assert request.call_args.args[1].endswith("/user.current")

    request.return_value = fake_response(401, text="")
    assert webhook_client.check_connection() is False


@pytest.mark.unit
def test_get_entity_fields_labels(webhook_client, fake_response):
    webhook_client.executor.transport.session.request.return_value = fake_response(
        200,
        {
            "result": {
                "TITLE": {"title": "Title"},
                "OPPORTUNITY": {},
                "UF_CRM_1": {"listLabel": "Budget", "title": "UF_CRM_1"},
                "UF_CRM_2": {},
            }
        },
    )

    options = webhook_client.get_entity_fields("deal")

    assert options == [
        {"name": "Title", "value": "TITLE"},
        {"name": "OPPORTUNITY", "value": "OPPORTUNITY"},
        {"name": "Budget", "value": "UF_CRM_1", "description": "Custom field (UF_CRM_1)"},
        {"name": "Custom Field: UF_CRM_2", "value": "UF_CRM_2", "description": "Custom field (UF_CRM_2)"},
    ]
    assert webhook_client.executor.transport.session.request.call_args.args[1].endswith("/crm.deal.fields")


@pytest.mark.unit
def test_get_entity_fields_empty_on_failure(webhook_client, fake_response):
    webhook_client.executor.transport.session.request.return_value = fake_response(404, text="")

    assert webhook_client.get_entity_fields("nothing") == []


@pytest.mark.unit
def test_download_file(webhook_client, fake_response):
    get = webhook_client.executor.transport.session.get
    get.return_value = fake_response(200, content=b"%PDF")

    assert webhook_client.download_file("https://example.bitrix24.com/disk/1") == b"%PDF"

    get.return_value = fake_response(403)
    with pytest.raises(Bitrix24DownloadError):
        webhook_client.download_file("https://example.bitrix24.com/disk/1")

    get.side_effect = requests.ConnectionError("down")
    with pytest.raises(Bitrix24DownloadError):
        webhook_client.download_file("https://example.bitrix24.com/disk/1")


@pytest.mark.unit
def test_context_manager_closes_sessions(webhook_client):
    webhook_client.executor.transport.close = MagicMock()
    webhook_client.executor.refresher.close = MagicMock()

    with webhook_client as c:
        assert isinstance(c, Bitrix24Client)

    webhook_client.executor.transport.close.assert_called_once()
    webhook_client.executor.refresher.close.assert_called_once()


@pytest.mark.unit
def test_success_payload_untouched(webhook_client, fake_response):
    payload = {"result": {"ID": "1"}, "time": {"duration": 0.1}, "total": 1}
    webhook_client.executor.transport.session.request.return_value = fake_response(200, payload)

    result = webhook_client.execute("crm.deal.get", query={"id": 1})

    assert isinstance(result, Success)
    assert result.payload == payload
