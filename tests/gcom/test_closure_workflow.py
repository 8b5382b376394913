from __future__ import annotations

import io
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from playwright.async_api import Error as PlaywrightError

from baixa_os.common.json_logger import JsonLogger
from baixa_os.gcom import page_selectors
from baixa_os.gcom.closure import (
    CONFIRM_BUTTON_MISSING,
    FORM_NOT_LOADED,
    ORDER_NOT_CLOSED,
    SEARCH_NOT_LOADED,
    SESSION_EXPIRED,
    UNKNOWN_VALIDATION_ERROR,
    ClosureWorkflow,
    RetryPolicy,
)
from baixa_os.gcom.models import AuthenticationBundle
from fakes import FakePage, page_factory_for

ORDER_ID = "1076543210987654"
PORTAL_TZ = ZoneInfo("America/Sao_Paulo")


def _logger() -> JsonLogger:
    return JsonLogger(stream=io.StringIO(), log_file_path=None)


def _bundle() -> AuthenticationBundle:
    return AuthenticationBundle(cookies={"JSESSIONID": "abc"}, execution="e1s1", view_state="-1:1")


def _ready_page(**overrides) -> FakePage:
    page = FakePage(
        visible={
            page_selectors.RESULTS_FORM,
            page_selectors.START_DATE_INPUT,
            page_selectors.END_DATE_INPUT,
        },
        body_text="Nenhuma ordem de serviço pendente",
    )
    for name, value in overrides.items():
        setattr(page, name, value)
    return page


def _workflow(page: FakePage, sleeps: list[float] | None = None, **kwargs) -> ClosureWorkflow:
    recorded = sleeps if sleeps is not None else []

    async def _sleep(seconds: float) -> None:
        recorded.append(seconds)

    return ClosureWorkflow(
        clock=lambda: datetime(2025, 1, 15, 10, 30, tzinfo=PORTAL_TZ),
        sleep=_sleep,
        page_factory=page_factory_for(page),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_successful_closure_fills_form_and_verifies_listing() -> None:
    page = _ready_page()
    workflow = _workflow(page)

    outcome = await workflow.close(_bundle(), ORDER_ID, logger=_logger())

    assert outcome.succeeded is True
    assert outcome.messages == ("OK",)
    assert page.closed is True
    assert page.calls_of("fill", page_selectors.SEARCH_INPUT) == [("fill", page_selectors.SEARCH_INPUT, ORDER_ID)]
    assert page.calls_of("fill", page_selectors.START_DATE_INPUT)[0][2] == "15/01/2025 08:00"
    assert page.calls_of("fill", page_selectors.END_DATE_INPUT)[0][2] == "15/01/2025 08:00"
    assert page.calls_of("fill", page_selectors.DIAGNOSIS_TEXTAREA)[0][2] == "Enviado cobrança em 15/01/2025"
    assert page.calls_of("fill", page_selectors.REMEDY_TEXTAREA)[0][2] == "Usuário ciente dos débitos."
    assert len(page.calls_of("click", page_selectors.SAVE_BUTTON)) == 1
    assert page.calls_of("goto")[-1] == ("goto", page_selectors.LISTING_URL)

    opened = workflow._page_factory.opened
    assert opened[0]["cookies"] == {"JSESSIONID": "abc"}
    assert opened[0]["cookie_url"] == page_selectors.CLOSURE_URL


@pytest.mark.asyncio
async def test_radio_choices_are_clicked_in_order() -> None:
    page = _ready_page()

    await _workflow(page).close(_bundle(), ORDER_ID, logger=_logger())

    radio_clicks = [call[1] for call in page.calls_of("click") if "ui-radiobutton-box" in call[1]]
    assert radio_clicks == [
        page_selectors.radio_box("form1:j_idt426", 1),
        page_selectors.radio_box("form1:j_idt615", 0),
        page_selectors.radio_box("form1:j_idt604", 1),
    ]


@pytest.mark.asyncio
async def test_session_expired_stops_before_search() -> None:
    page = _ready_page(redirects={page_selectors.CLOSURE_URL: page_selectors.LOGIN_URL + "login"})

    outcome = await _workflow(page).close(_bundle(), ORDER_ID, logger=_logger())

    assert outcome.succeeded is False
    assert outcome.messages == (SESSION_EXPIRED,)
    assert outcome.unexpected is False
    assert page.calls_of("fill") == []
    assert page.closed is True


@pytest.mark.asyncio
async def test_search_is_retried_exactly_three_times() -> None:
    page = _ready_page(search_timeouts=99)
    sleeps: list[float] = []

    outcome = await _workflow(page, sleeps).close(_bundle(), ORDER_ID, logger=_logger())

    assert outcome.messages == (SEARCH_NOT_LOADED,)
    assert len(page.calls_of("fill", page_selectors.SEARCH_INPUT)) == 4
    assert len(page.calls_of("click", page_selectors.SEARCH_BUTTON)) == 4
    assert sleeps == [2.0, 2.0, 2.0]


@pytest.mark.asyncio
async def test_search_recovers_on_retry() -> None:
    page = _ready_page(search_timeouts=1)
    sleeps: list[float] = []

    outcome = await _workflow(page, sleeps, retry_policy=RetryPolicy(retries=3, delay_seconds=0.5)).close(
        _bundle(), ORDER_ID, logger=_logger()
    )

    assert outcome.succeeded is True
    assert sleeps == [0.5]


@pytest.mark.asyncio
async def test_search_rejection_returns_portal_messages() -> None:
    page = _ready_page(error_texts=["OS não encontrada", "  "])
    page.visible.add(page_selectors.FORM_MESSAGES)

    outcome = await _workflow(page).close(_bundle(), ORDER_ID, logger=_logger())

    assert outcome.succeeded is False
    assert outcome.messages == ("OS não encontrada",)
    assert page.calls_of("click", page_selectors.SAVE_BUTTON) == []


@pytest.mark.asyncio
async def test_missing_form_after_search() -> None:
    page = _ready_page()
    page.visible.discard(page_selectors.RESULTS_FORM)

    outcome = await _workflow(page).close(_bundle(), ORDER_ID, logger=_logger())

    assert outcome.messages == (FORM_NOT_LOADED,)


@pytest.mark.asyncio
async def test_validation_failure_without_text_uses_fallback_message() -> None:
    page = _ready_page()
    page.on_click[page_selectors.SAVE_BUTTON] = lambda: page.visible.add(page_selectors.FORM_MESSAGES)

    outcome = await _workflow(page).close(_bundle(), ORDER_ID, logger=_logger())

    assert outcome.succeeded is False
    assert outcome.messages == (UNKNOWN_VALIDATION_ERROR,)


@pytest.mark.asyncio
async def test_confirmation_dialog_without_button() -> None:
    page = _ready_page()
    page.visible.add(page_selectors.CONFIRM_DIALOG)

    outcome = await _workflow(page).close(_bundle(), ORDER_ID, logger=_logger())

    assert outcome.messages == (CONFIRM_BUTTON_MISSING,)


@pytest.mark.asyncio
async def test_confirmation_dialog_is_accepted() -> None:
    page = _ready_page()
    page.visible.update({page_selectors.CONFIRM_DIALOG, page_selectors.CONFIRM_BUTTON})

    outcome = await _workflow(page).close(_bundle(), ORDER_ID, logger=_logger())

    assert outcome.succeeded is True
    assert len(page.calls_of("click", page_selectors.CONFIRM_BUTTON)) == 1


@pytest.mark.asyncio
async def test_server_error_page_reports_tracking_code() -> None:
    page = _ready_page(
        texts={
            page_selectors.SERVER_ERROR_MESSAGE: "Erro inesperado. Código: ABC123",
            page_selectors.SERVER_ERROR_TRACKING: "ABC123",
        }
    )
    page.visible.update({page_selectors.SERVER_ERROR_ICON, page_selectors.SERVER_ERROR_MESSAGE})

    outcome = await _workflow(page).close(_bundle(), ORDER_ID, logger=_logger())

    assert outcome.succeeded is False
    assert outcome.messages == ("Server error: Erro inesperado. Código: ABC123 (tracking code: ABC123)",)


@pytest.mark.asyncio
async def test_order_still_listed_is_not_closed() -> None:
    page = _ready_page(body_text=f"Recebidas {ORDER_ID} Rua A")

    outcome = await _workflow(page).close(_bundle(), ORDER_ID, logger=_logger())

    assert outcome.messages == (ORDER_NOT_CLOSED,)


@pytest.mark.asyncio
async def test_unexpected_fault_becomes_unexpected_outcome() -> None:
    page = _ready_page(goto_error=RuntimeError("browser crashed"))

    outcome = await _workflow(page).close(_bundle(), ORDER_ID, logger=_logger())

    assert outcome.succeeded is False
    assert outcome.unexpected is True
    assert outcome.messages == ("Unexpected error: browser crashed",)
    assert page.closed is True


@pytest.mark.asyncio
async def test_playwright_fault_becomes_unexpected_outcome() -> None:
    page = _ready_page(goto_error=PlaywrightError("Target closed"))

    outcome = await _workflow(page).close(_bundle(), ORDER_ID, logger=_logger())

    assert outcome.unexpected is True
    assert outcome.messages[0].startswith("Playwright error: Target closed")
