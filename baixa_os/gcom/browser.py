from __future__ import annotations

import contextlib
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Mapping

from playwright.async_api import Browser, Page, async_playwright

from baixa_os.common.json_logger import JsonLogger, log_event


@dataclass(frozen=True)
class BrowserOptions:
    headless: bool = True
    slow_mo_ms: int = 0
    executable_path: str | None = None


PageFactory = Callable[..., Any]


async def launch_browser(*, playwright: Any, logger: JsonLogger, options: BrowserOptions) -> Browser:
    launch_kwargs: Dict[str, Any] = {"headless": options.headless}
    if options.slow_mo_ms:
        launch_kwargs["slow_mo"] = options.slow_mo_ms
    if options.executable_path:
        launch_kwargs["executable_path"] = options.executable_path

    log_event(
        logger=logger,
        phase="init",
        message="Launching Playwright Chromium",
        headless=options.headless,
        slow_mo_ms=options.slow_mo_ms,
        executable_path=options.executable_path,
    )

    try:
        return await playwright.chromium.launch(**launch_kwargs)
    except Exception as exc:
        if launch_kwargs.pop("executable_path", None) is not None:
            log_event(
                logger=logger,
                phase="init",
                status="warn",
                message="Local Chrome launch failed; retrying with bundled Chromium",
                executable_path=options.executable_path,
                error=str(exc),
            )
            return await playwright.chromium.launch(**launch_kwargs)
        raise


@asynccontextmanager
async def open_page(
    *,
    logger: JsonLogger,
    options: BrowserOptions | None = None,
    cookies: Mapping[str, str] | None = None,
    cookie_url: str | None = None,
) -> AsyncIterator[Page]:
    """Yield a page in a fresh, isolated browser; everything is closed on exit.

    Each caller owns a whole browser instance: the login and every closure
    attempt get their own, so a broken page never leaks into the next order.
    """

    resolved = options or BrowserOptions()
    async with async_playwright() as playwright:
        browser = await launch_browser(playwright=playwright, logger=logger, options=resolved)
        context = None
        page = None
        try:
            context = await browser.new_context()
            if cookies:
                await context.add_cookies(
                    [{"name": name, "value": value, "url": cookie_url} for name, value in cookies.items()]
                )
            page = await context.new_page()
            page.on(
                "console",
                lambda msg: log_event(
                    logger=logger,
                    phase="browser",
                    message=msg.text,
                    console_type=msg.type,
                ),
            )
            yield page
        finally:
            for resource in (page, context, browser):
                if resource is None:
                    continue
                with contextlib.suppress(Exception):
                    await resource.close()
