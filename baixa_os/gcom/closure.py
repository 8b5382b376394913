"""Closure ("baixa") of a single service order through the GCOM form.

One call owns one browser from start to finish. The stages run in a fixed
order; any stage may end the attempt by returning an outcome, and the last
one (verification) always does. Faults are converted to outcomes here and
never reach the caller.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence
from zoneinfo import ZoneInfo

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, TimeoutError

from baixa_os.common.date_utils import aware_now, execution_window
from baixa_os.common.json_logger import JsonLogger, log_event
from baixa_os.gcom import page_selectors
from baixa_os.gcom.browser import BrowserOptions, PageFactory, open_page
from baixa_os.gcom.models import AuthenticationBundle, ClosureOutcome, OrderId

NAV_TIMEOUT_MS = 30_000
SEARCH_TIMEOUT_MS = 15_000
ACTION_TIMEOUT_MS = 5_000
TEXTAREA_CLICK_TIMEOUT_MS = 3_000

SESSION_EXPIRED = "session expired"
SEARCH_NOT_LOADED = "search results not loaded after retries"
FORM_NOT_LOADED = "form not loaded after search"
CONFIRM_BUTTON_MISSING = "confirmation button not found"
ORDER_NOT_CLOSED = "order not closed"
UNKNOWN_VALIDATION_ERROR = "unknown validation error"
SUCCESS_MESSAGE = "OK"

REMOVE_READONLY_JS = "el => el.removeAttribute('readonly')"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with a fixed pause before every retry."""

    retries: int = 3
    delay_seconds: float = 2.0


@dataclass(frozen=True)
class RadioChoice:
    group_id: str
    position: int
    label: str


DEFAULT_RADIO_CHOICES: tuple[RadioChoice, ...] = (
    RadioChoice("form1:j_idt426", 1, "Deseja refaturar conta: Não"),
    RadioChoice("form1:j_idt615", 0, "Executado: Sim"),
    RadioChoice("form1:j_idt604", 1, "Havia vazamento ou extravasamento: Não"),
)

DIAGNOSIS_TEMPLATE = "Enviado cobrança em {day}"
REMEDY_TEXT = "Usuário ciente dos débitos."

Stage = Callable[[Page, OrderId, JsonLogger], Awaitable[Optional[ClosureOutcome]]]


async def extract_error_messages(page: Page) -> list[str]:
    """Texts of every visible validation message; never an empty list."""

    messages: list[str] = []
    for element in await page.locator(page_selectors.ERROR_MESSAGES).all():
        text = (await element.inner_text()).strip()
        if text:
            messages.append(text)
    return messages or [UNKNOWN_VALIDATION_ERROR]


class ClosureWorkflow:
    def __init__(
        self,
        *,
        options: BrowserOptions | None = None,
        retry_policy: RetryPolicy | None = None,
        radio_choices: Sequence[RadioChoice] = DEFAULT_RADIO_CHOICES,
        tz: ZoneInfo | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        page_factory: PageFactory = open_page,
    ) -> None:
        self._options = options or BrowserOptions()
        self._retry = retry_policy or RetryPolicy()
        self._radio_choices = tuple(radio_choices)
        self._clock = clock or (lambda: aware_now(tz))
        self._sleep = sleep
        self._page_factory = page_factory

    @property
    def stages(self) -> tuple[Stage, ...]:
        return (
            self._bootstrap,
            self._search,
            self._validate_search,
            self._populate,
            self._submit,
            self._confirm,
            self._check_server_error,
            self._verify,
        )

    async def close(self, bundle: AuthenticationBundle, order_id: OrderId, *, logger: JsonLogger) -> ClosureOutcome:
        log = logger.bind(order_id=order_id)
        log_event(logger=log, phase="closure", message="Starting order closure")
        try:
            async with self._page_factory(
                logger=log,
                options=self._options,
                cookies=bundle.cookies,
                cookie_url=page_selectors.CLOSURE_URL,
            ) as page:
                outcome = await self._run_stages(page, order_id, log)
        except PlaywrightError as exc:
            log_event(logger=log, phase="closure", status="error", message="Playwright error", error=str(exc))
            return ClosureOutcome.failure(order_id, f"Playwright error: {exc}", unexpected=True)
        except Exception as exc:
            log_event(
                logger=log,
                phase="closure",
                status="error",
                message="Unexpected error",
                error=str(exc),
                exception=repr(exc),
            )
            return ClosureOutcome.failure(order_id, f"Unexpected error: {exc}", unexpected=True)

        log_event(
            logger=log,
            phase="closure",
            status="ok" if outcome.succeeded else "warn",
            message="Order closure finished",
            succeeded=outcome.succeeded,
            messages=list(outcome.messages),
        )
        return outcome

    async def _run_stages(self, page: Page, order_id: OrderId, log: JsonLogger) -> ClosureOutcome:
        for stage in self.stages:
            outcome = await stage(page, order_id, log)
            if outcome is not None:
                return outcome
        raise RuntimeError("closure stages ended without an outcome")

    async def _bootstrap(self, page: Page, order_id: OrderId, log: JsonLogger) -> Optional[ClosureOutcome]:
        await page.goto(page_selectors.CLOSURE_URL)
        await page.wait_for_load_state("networkidle", timeout=NAV_TIMEOUT_MS)
        if page_selectors.LOGIN_PATH_MARKER in (page.url or ""):
            log_event(logger=log, phase="closure", status="error", message="Session expired", final_url=page.url)
            return ClosureOutcome.failure(order_id, SESSION_EXPIRED)
        return None

    async def _search(self, page: Page, order_id: OrderId, log: JsonLogger) -> Optional[ClosureOutcome]:
        for attempt in range(self._retry.retries + 1):
            if attempt:
                log_event(
                    logger=log,
                    phase="search",
                    status="warn",
                    message="Retrying order search",
                    attempt=attempt,
                    delay_seconds=self._retry.delay_seconds,
                )
                await self._sleep(self._retry.delay_seconds)
            await page.locator(page_selectors.SEARCH_INPUT).fill(order_id)
            await page.locator(page_selectors.SEARCH_BUTTON).click()
            try:
                await page.wait_for_selector(page_selectors.SEARCH_OUTCOME, timeout=SEARCH_TIMEOUT_MS)
            except TimeoutError:
                log_event(
                    logger=log,
                    phase="search",
                    status="warn",
                    message="Search results not loaded in time",
                    attempt=attempt,
                    timeout_ms=SEARCH_TIMEOUT_MS,
                )
                continue
            return None

        log_event(
            logger=log,
            phase="search",
            status="error",
            message="Search results not loaded after retries",
            retries=self._retry.retries,
        )
        return ClosureOutcome.failure(order_id, SEARCH_NOT_LOADED)

    async def _validate_search(self, page: Page, order_id: OrderId, log: JsonLogger) -> Optional[ClosureOutcome]:
        if await page.locator(page_selectors.FORM_MESSAGES).is_visible():
            errors = await extract_error_messages(page)
            log_event(logger=log, phase="search", status="warn", message="Search rejected", errors=errors)
            return ClosureOutcome.failure(order_id, errors)
        if not await page.locator(page_selectors.RESULTS_FORM).is_visible():
            log_event(logger=log, phase="search", status="error", message="Closure form not found after search")
            return ClosureOutcome.failure(order_id, FORM_NOT_LOADED)
        return None

    async def _populate(self, page: Page, order_id: OrderId, log: JsonLogger) -> Optional[ClosureOutcome]:
        for choice in self._radio_choices:
            await self._click_radio(page, choice, log)

        window = execution_window(self._clock())
        # Both fields get the 08:00 start stamp; end_text is only logged.
        await self._fill_date(page, page_selectors.START_DATE_INPUT, window.start_text, "dataInicioExecucao", log)
        await self._fill_date(page, page_selectors.END_DATE_INPUT, window.start_text, "dataFimExecucao", log)
        log_event(
            logger=log,
            phase="populate",
            message="Execution dates filled",
            start=window.start_text,
            end=window.end_text,
        )

        await self._fill_textarea(
            page, page_selectors.DIAGNOSIS_TEXTAREA, DIAGNOSIS_TEMPLATE.format(day=window.day_text), log
        )
        await self._fill_textarea(page, page_selectors.REMEDY_TEXTAREA, REMEDY_TEXT, log)
        return None

    async def _click_radio(self, page: Page, choice: RadioChoice, log: JsonLogger) -> None:
        selector = page_selectors.radio_box(choice.group_id, choice.position)
        try:
            await page.locator(selector).click(timeout=ACTION_TIMEOUT_MS)
        except PlaywrightError as exc:
            log_event(
                logger=log,
                phase="populate",
                status="warn",
                message="Radio option could not be selected",
                field=choice.label,
                selector=selector,
                error=str(exc),
            )
            return
        log_event(logger=log, phase="populate", message="Radio option selected", field=choice.label)

    async def _fill_date(self, page: Page, selector: str, value: str, label: str, log: JsonLogger) -> None:
        field = page.locator(selector)
        if not await field.is_visible():
            log_event(logger=log, phase="populate", status="warn", message="Date field not visible", field=label)
            return
        await field.evaluate(REMOVE_READONLY_JS)
        await field.fill(value)

    async def _fill_textarea(self, page: Page, selector: str, text: str, log: JsonLogger) -> None:
        area = page.locator(selector)
        try:
            await area.evaluate(REMOVE_READONLY_JS)
            await area.scroll_into_view_if_needed()
            await area.click(timeout=TEXTAREA_CLICK_TIMEOUT_MS)
            await area.fill(text)
        except PlaywrightError as exc:
            log_event(
                logger=log,
                phase="populate",
                status="warn",
                message="Text area could not be filled",
                selector=selector,
                error=str(exc),
            )
            return
        log_event(logger=log, phase="populate", message="Text area filled", selector=selector, text=text)

    async def _submit(self, page: Page, order_id: OrderId, log: JsonLogger) -> Optional[ClosureOutcome]:
        await page.locator(page_selectors.SAVE_BUTTON).click(force=True)
        log_event(logger=log, phase="submit", message="Save clicked")
        if await page.locator(page_selectors.FORM_MESSAGES).is_visible():
            errors = await extract_error_messages(page)
            log_event(logger=log, phase="submit", status="warn", message="Validation failed", errors=errors)
            return ClosureOutcome.failure(order_id, errors)
        return None

    async def _confirm(self, page: Page, order_id: OrderId, log: JsonLogger) -> Optional[ClosureOutcome]:
        if not await page.locator(page_selectors.CONFIRM_DIALOG).is_visible():
            return None
        button = page.locator(page_selectors.CONFIRM_BUTTON)
        if not await button.is_visible():
            log_event(logger=log, phase="confirm", status="error", message="Confirmation button not found")
            return ClosureOutcome.failure(order_id, CONFIRM_BUTTON_MISSING)
        await button.click()
        await page.wait_for_load_state("networkidle", timeout=NAV_TIMEOUT_MS)
        log_event(logger=log, phase="confirm", message="Confirmation accepted")
        return None

    async def _check_server_error(self, page: Page, order_id: OrderId, log: JsonLogger) -> Optional[ClosureOutcome]:
        if not (
            await page.locator(page_selectors.SERVER_ERROR_ICON).is_visible()
            and await page.locator(page_selectors.SERVER_ERROR_MESSAGE).is_visible()
        ):
            return None
        message = (await page.locator(page_selectors.SERVER_ERROR_MESSAGE).inner_text()).strip()
        tracking_code = (await page.locator(page_selectors.SERVER_ERROR_TRACKING).inner_text()).strip()
        log_event(
            logger=log,
            phase="submit",
            status="error",
            message="Portal returned its error page",
            portal_message=message,
            tracking_code=tracking_code,
        )
        return ClosureOutcome.failure(order_id, f"Server error: {message} (tracking code: {tracking_code})")

    async def _verify(self, page: Page, order_id: OrderId, log: JsonLogger) -> Optional[ClosureOutcome]:
        await page.goto(page_selectors.LISTING_URL)
        await page.wait_for_load_state("networkidle", timeout=NAV_TIMEOUT_MS)
        if order_id in await page.inner_text("body"):
            log_event(logger=log, phase="verify", status="warn", message="Order still listed as pending")
            return ClosureOutcome.failure(order_id, ORDER_NOT_CLOSED)
        log_event(logger=log, phase="verify", message="Order no longer listed")
        return ClosureOutcome.success(order_id, SUCCESS_MESSAGE)
