import pytest

from workflow_connectors.bitrix24.schema import (
    ApiError,
    Failure,
    PaginationState,
    RequestAuth,
    RequestDescriptor,
    RequestOptions,
    Success,
    TokenCredential,
    TokenPair,
)


@pytest.mark.unit
def test_descriptor_strips_leading_slash():
    d = RequestDescriptor(endpoint="/crm.deal.list", body=None, query=None)

    assert d.endpoint == "crm.deal.list"
    assert d.body == {}
    assert d.query == {}


@pytest.mark.unit
def test_request_options_trim_token():
    assert RequestOptions(access_token="  tok ").access_token == "tok"
    assert RequestOptions(access_token="   ").access_token is None


@pytest.mark.unit
def test_options_merge_only_explicit_fields():
    defaults = RequestOptions(allow_webhook_fallback=True, access_token="default")
    merged = defaults.merged_with(RequestOptions(auth=RequestAuth.WEBHOOK))

    assert merged.auth is RequestAuth.WEBHOOK
    assert merged.allow_webhook_fallback is True
    assert merged.access_token == "default"


@pytest.mark.unit
def test_build_descriptor_from_options():
    d = RequestDescriptor.build(
        "tasks.task.list",
        query={"filter": {"ID": 1}},
        options=RequestOptions(access_token="x", allow_webhook_fallback=True),
    )

    assert d.access_token_override == "x"
    assert d.allow_webhook_fallback is True
    assert d.query == {"filter": {"ID": 1}}


@pytest.mark.unit
def test_result_types_expose_ok():
    assert Success(payload={"result": 1}).ok is True
    failure = Failure(error=ApiError(code="X", description="Y", http_status=400))
    assert failure.ok is False
    assert failure.error.to_payload() == {
        "error": "X",
        "error_description": "Y",
        "status": 400,
        "original_error": {},
    }


@pytest.mark.unit
def test_pagination_state_advances_by_page_size():
    state = PaginationState()
    assert state.offset == 0
    assert state.page_size == 50
    assert state.advance().advance().offset == 100


@pytest.mark.unit
def test_with_tokens_replaces_both_tokens(token_raw_config):
    cred = TokenCredential.model_validate(token_raw_config)

    updated = cred.with_tokens(TokenPair(access_token="a2", refresh_token="r2"))
    kept = cred.with_tokens(TokenPair(access_token="a3"))

    assert (updated.access_token, updated.refresh_token) == ("a2", "r2")
    assert updated.client_id == "app.123"
    assert kept.refresh_token == "refresh-1"
    assert cred.access_token == "old-token"
