from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Any

import pytest
import requests

from baixa_os.common.json_logger import JsonLogger
from baixa_os.gcom import page_selectors
from baixa_os.gcom.listing import OrderListingClient, build_page_size_payload
from baixa_os.gcom.listing_parser import RESULTS_GRID_ID
from baixa_os.gcom.models import AuthenticationBundle, ProtocolFailure

CONTROL_VIEW = """
<html><body>
<form id="abas:formRecebidas" method="post" action="/gcom/app/atendimento/os/controleOs/controle?execution=e3s1">
<input type="hidden" name="javax.faces.ViewState" id="j_id1:javax.faces.ViewState:0" value="-812:3301" autocomplete="off" />
</form>
</body></html>
"""

GRID_RESPONSE = (
    "<partial-response><changes>"
    f'<update id="{RESULTS_GRID_ID}"><![CDATA['
    '<tr data-ri="0"><td></td><td>Recebida</td><td>Rua A</td><td>1076543210987654</td></tr>'
    "]]></update></changes></partial-response>"
)


@dataclass
class _FakeResponse:
    text: str
    url: str
    status_code: int = 200

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


@dataclass
class _FakeSession:
    get_response: _FakeResponse
    post_responses: list[_FakeResponse] = field(default_factory=list)
    gets: list[dict[str, Any]] = field(default_factory=list)
    posts: list[dict[str, Any]] = field(default_factory=list)

    def get(self, url: str, **kwargs: Any) -> _FakeResponse:
        self.gets.append({"url": url, **kwargs})
        return self.get_response

    def post(self, url: str, **kwargs: Any) -> _FakeResponse:
        self.posts.append({"url": url, **kwargs})
        return self.post_responses.pop(0)


def _logger() -> JsonLogger:
    return JsonLogger(stream=io.StringIO(), log_file_path=None)


def _bundle() -> AuthenticationBundle:
    return AuthenticationBundle(cookies={"JSESSIONID": "abc", "route": "r1"}, execution="e1s1", view_state="-1:1")


def test_list_pending_replays_tab_change_and_page_size() -> None:
    session = _FakeSession(
        get_response=_FakeResponse(CONTROL_VIEW, f"{page_selectors.LISTING_URL}?execution=e2s1"),
        post_responses=[_FakeResponse("<partial-response/>", ""), _FakeResponse(GRID_RESPONSE, "")],
    )
    client = OrderListingClient(rows_per_page=50, session=session)

    assert client.list_pending(_bundle(), logger=_logger()) == ["1076543210987654"]

    assert session.gets[0]["params"] == {"id": "1111"}
    assert session.gets[0]["headers"] == {"Cookie": "JSESSIONID=abc; route=r1"}

    tab_change, page_size = session.posts
    assert tab_change["url"] == f"{page_selectors.LISTING_URL}?execution=e2s1"
    assert tab_change["data"]["abas_newTab"] == "abas:recebidas"
    assert tab_change["data"]["javax.faces.ViewState"] == "-812:3301"
    assert tab_change["headers"]["Faces-Request"] == "partial/ajax"
    assert tab_change["headers"]["Cookie"] == "JSESSIONID=abc; route=r1"
    assert page_size["data"] == build_page_size_payload("-812:3301", 50)
    assert page_size["data"][f"{RESULTS_GRID_ID}_rows"] == "50"


def test_execution_falls_back_to_form_action() -> None:
    session = _FakeSession(
        get_response=_FakeResponse(CONTROL_VIEW, page_selectors.LISTING_URL),
        post_responses=[_FakeResponse("", ""), _FakeResponse(GRID_RESPONSE, "")],
    )
    client = OrderListingClient(session=session)

    client.list_pending(_bundle(), logger=_logger())

    assert session.posts[0]["url"] == f"{page_selectors.LISTING_URL}?execution=e3s1"
    assert session.posts[1]["data"][f"{RESULTS_GRID_ID}_rows"] == "100"


def test_missing_view_state_is_a_protocol_failure() -> None:
    body = '<form action="/controle?execution=e3s1"></form>'
    session = _FakeSession(get_response=_FakeResponse(body, page_selectors.LISTING_URL))
    client = OrderListingClient(session=session)

    with pytest.raises(ProtocolFailure):
        client.list_pending(_bundle(), logger=_logger())
    assert session.posts == []


def test_missing_execution_is_a_protocol_failure() -> None:
    body = '<input type="hidden" name="javax.faces.ViewState" value="-812:3301" />'
    session = _FakeSession(get_response=_FakeResponse(body, page_selectors.LISTING_URL))
    client = OrderListingClient(session=session)

    with pytest.raises(ProtocolFailure):
        client.list_pending(_bundle(), logger=_logger())


def test_http_errors_propagate() -> None:
    session = _FakeSession(get_response=_FakeResponse("", page_selectors.LISTING_URL, status_code=502))
    client = OrderListingClient(session=session)

    with pytest.raises(requests.HTTPError):
        client.list_pending(_bundle(), logger=_logger())


def test_cookies_are_not_logged() -> None:
    stream = io.StringIO()
    session = _FakeSession(
        get_response=_FakeResponse(CONTROL_VIEW, f"{page_selectors.LISTING_URL}?execution=e2s1"),
        post_responses=[_FakeResponse("", ""), _FakeResponse(GRID_RESPONSE, "")],
    )

    OrderListingClient(session=session).list_pending(
        _bundle(), logger=JsonLogger(stream=stream, log_file_path=None)
    )

    assert "JSESSIONID" not in stream.getvalue()
    assert "-812:3301" not in stream.getvalue()
