from __future__ import annotations

import re

from playwright.async_api import Page

from baixa_os.common.json_logger import JsonLogger, log_event, short_token, timed_event
from baixa_os.gcom import page_selectors
from baixa_os.gcom.browser import BrowserOptions, PageFactory, open_page
from baixa_os.gcom.models import AuthenticationBundle, AuthFailure, Credentials

NAV_TIMEOUT_MS = 30_000
EXECUTION_PATTERN = re.compile(r"execution=([^&]+)")


def execution_from_url(url: str) -> str | None:
    match = EXECUTION_PATTERN.search(url or "")
    return match.group(1) if match else None


class SessionManager:
    """Log into GCOM with a throwaway browser and keep only the auth bundle."""

    def __init__(
        self,
        *,
        options: BrowserOptions | None = None,
        page_factory: PageFactory = open_page,
    ) -> None:
        self._options = options or BrowserOptions()
        self._page_factory = page_factory

    async def login(self, credentials: Credentials, *, logger: JsonLogger) -> AuthenticationBundle:
        log_event(logger=logger, phase="login", message="Starting portal login", username=credentials.username)
        with timed_event(logger=logger, phase="login", message="Portal login"):
            async with self._page_factory(logger=logger, options=self._options) as page:
                await self._submit_login(page, credentials, logger=logger)
                return await self._capture_bundle(page, logger=logger)

    async def _submit_login(self, page: Page, credentials: Credentials, *, logger: JsonLogger) -> None:
        await page.goto(page_selectors.LOGIN_URL)
        await page.locator(page_selectors.LOGIN_USERNAME).fill(credentials.username)
        await page.locator(page_selectors.LOGIN_PASSWORD).fill(credentials.password)
        await page.locator(page_selectors.LOGIN_SUBMIT).click()
        await page.wait_for_load_state("networkidle", timeout=NAV_TIMEOUT_MS)
        log_event(logger=logger, phase="login", message="Login form submitted")

        await page.goto(page_selectors.LISTING_URL)
        if page_selectors.LISTING_PATH_MARKER not in (page.url or ""):
            log_event(
                logger=logger,
                phase="login",
                status="error",
                message="Order control page not reached after login",
                final_url=page.url,
            )
            raise AuthFailure(
                "Login did not reach the order control page; check credentials or portal availability"
            )

    async def _capture_bundle(self, page: Page, *, logger: JsonLogger) -> AuthenticationBundle:
        view_state = await page.locator(page_selectors.VIEW_STATE_INPUT).first.get_attribute("value")
        execution = execution_from_url(page.url)
        cookies = {cookie["name"]: cookie["value"] for cookie in await page.context.cookies()}

        log_event(
            logger=logger,
            phase="login",
            message="Authentication bundle captured",
            execution=short_token(execution),
            view_state=short_token(view_state),
            cookie_names=sorted(cookies),
        )
        return AuthenticationBundle(cookies=cookies, execution=execution or "", view_state=view_state or "")
