from __future__ import annotations

import io

import pytest

from baixa_os.common.json_logger import JsonLogger
from baixa_os.gcom import page_selectors
from baixa_os.gcom.models import AuthFailure, Credentials
from baixa_os.gcom.session import SessionManager, execution_from_url
from fakes import FakePage, page_factory_for

CREDENTIALS = Credentials(username="operador", password="s3cret")


def _logger(stream: io.StringIO | None = None) -> JsonLogger:
    return JsonLogger(stream=stream or io.StringIO(), log_file_path=None)


@pytest.mark.asyncio
async def test_login_captures_cookies_and_portal_tokens() -> None:
    page = FakePage(
        redirects={page_selectors.LISTING_URL: f"{page_selectors.LISTING_URL}?execution=e1s1"},
        attributes={page_selectors.VIEW_STATE_INPUT: "-812:3301"},
        cookie_jar=[{"name": "JSESSIONID", "value": "abc"}, {"name": "route", "value": "r1"}],
    )
    manager = SessionManager(page_factory=page_factory_for(page))

    bundle = await manager.login(CREDENTIALS, logger=_logger())

    assert bundle.execution == "e1s1"
    assert bundle.view_state == "-812:3301"
    assert dict(bundle.cookies) == {"JSESSIONID": "abc", "route": "r1"}
    assert page.calls_of("fill", page_selectors.LOGIN_USERNAME) == [("fill", page_selectors.LOGIN_USERNAME, "operador")]
    assert page.calls_of("fill", page_selectors.LOGIN_PASSWORD) == [("fill", page_selectors.LOGIN_PASSWORD, "s3cret")]
    assert len(page.calls_of("click", page_selectors.LOGIN_SUBMIT)) == 1
    assert page.closed is True


@pytest.mark.asyncio
async def test_login_that_does_not_reach_control_page_fails() -> None:
    page = FakePage(redirects={page_selectors.LISTING_URL: page_selectors.LOGIN_URL + "login?error=1"})
    manager = SessionManager(page_factory=page_factory_for(page))

    with pytest.raises(AuthFailure):
        await manager.login(CREDENTIALS, logger=_logger())
    assert page.closed is True


@pytest.mark.asyncio
async def test_password_is_never_logged() -> None:
    stream = io.StringIO()
    page = FakePage(
        redirects={page_selectors.LISTING_URL: f"{page_selectors.LISTING_URL}?execution=e1s1"},
        attributes={page_selectors.VIEW_STATE_INPUT: "-812:3301"},
    )

    await SessionManager(page_factory=page_factory_for(page)).login(CREDENTIALS, logger=_logger(stream))

    assert "s3cret" not in stream.getvalue()
    assert "s3cret" not in repr(CREDENTIALS)


def test_execution_from_url() -> None:
    assert execution_from_url("https://x/controle?execution=e4s2&foo=1") == "e4s2"
    assert execution_from_url("https://x/controle") is None
