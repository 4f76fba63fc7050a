from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from .exceptions import RequestConfigError
from .executor import RequestExecutor
from .schema import (
    PAGE_SIZE,
    Credential,
    Failure,
    PaginationState,
    RequestDescriptor,
    TokenCredential,
    TokenPair,
    WebhookCredential,
)


logger = logging.getLogger(__name__)

_MISSING = object()


def _start_offset(query: Dict[str, Any]) -> int:
    start = query.get("start", 0)
    if start is None or start == "":
        return 0
    try:
        offset = int(start)
    except (TypeError, ValueError) as e:
        raise RequestConfigError(f"'start' must be an integer offset, got {start!r}") from e
    if offset < 0:
        raise RequestConfigError(f"'start' must not be negative, got {offset}")
    return offset


def _page_items(payload: Dict[str, Any], result_key: str) -> Any:
    result = payload.get("result")
    if not isinstance(result, dict):
        return _MISSING
    return result.get(result_key, _MISSING)


def collect_all_pages(
    executor: RequestExecutor,
    descriptor: RequestDescriptor,
    credential: Credential,
    result_key: str,
    webhook_credential: Optional[WebhookCredential] = None,
    max_pages: Optional[int] = None,
    on_token_refresh: Optional[Callable[[TokenPair], None]] = None,
) -> Union[List[Any], Dict[str, Any]]:
    """
    Walk a list endpoint with `start` offsets of PAGE_SIZE and merge
    `result[result_key]` from every page, in order.

    Stops on an empty page, a singleton (non-list) result, or a failed page.
    If the very first page fails or has no `result[result_key]`, that page's
    raw payload is returned unchanged so the caller can see what the
    endpoint actually sent. Later failures return what was gathered so far.

    Pages are requested strictly one after another. A token pair refreshed
    mid-walk replaces the credential's tokens for the remaining pages and is
    reported through `on_token_refresh`.
    """
    state = PaginationState(offset=_start_offset(descriptor.query), page_size=PAGE_SIZE)
    items: List[Any] = []
    page = 0
    cap = max_pages if max_pages is not None else executor.config.max_pages

    while True:
        page_descriptor = descriptor.model_copy(
            update={"query": {**descriptor.query, "start": state.offset}}
        )
        result = executor.execute(page_descriptor, credential, webhook_credential)
        page += 1

        if isinstance(result, Failure):
            if page == 1:
                return result.error.to_payload()
            logger.warning(
                f"Stopping pagination of {descriptor.endpoint} at start={state.offset}: "
                f"{result.error.code}"
            )
            return items

        if result.refreshed_token is not None:
            if on_token_refresh is not None:
                on_token_refresh(result.refreshed_token)
            # later pages, and any further refresh, use the new pair
            if isinstance(credential, TokenCredential):
                credential = credential.with_tokens(result.refreshed_token)
            descriptor = descriptor.model_copy(update={"access_token_override": None})

        page_items = _page_items(result.payload, result_key)
        if page_items is _MISSING:
            if page == 1:
                return result.payload
            return items

        if not isinstance(page_items, list):
            if page_items:
                items.append(page_items)
            return items

        items.extend(page_items)
        if not page_items:
            return items

        if cap is not None and page >= cap:
            logger.warning(
                f"Pagination of {descriptor.endpoint} hit the {cap}-page cap; "
                f"{len(items)} items collected"
            )
            return items

        state = state.advance()
