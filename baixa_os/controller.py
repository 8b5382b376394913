from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Optional

from baixa_os.common.date_utils import aware_now
from baixa_os.common.json_logger import JsonLogger, get_logger, log_event, new_run_id
from baixa_os.gcom.closure import SESSION_EXPIRED, ClosureWorkflow
from baixa_os.gcom.listing import OrderListingClient
from baixa_os.gcom.models import AuthenticationBundle, AuthFailure, ClosureOutcome, Credentials, OrderId
from baixa_os.gcom.session import SessionManager
from baixa_os.notifications import (
    ErrorEvent,
    LoggingNotifier,
    NotificationEvent,
    Notifier,
    SuccessEvent,
    SummaryEvent,
)

DEFAULT_EMPTY_POLL_INTERVAL_SECONDS = 30.0


class ConflictError(RuntimeError):
    """Raised when start/stop does not match the current run state."""


@dataclass(frozen=True)
class RunState:
    is_running: bool = False
    started_at: Optional[datetime] = None
    current_order_id: Optional[OrderId] = None
    job_id: Optional[str] = None

    def describe(self) -> str:
        if not self.is_running:
            return "Idle"
        text = f"Running since {self.started_at.isoformat() if self.started_at else '?'}"
        if self.current_order_id:
            text += f" | order {self.current_order_id}"
        return text


class StopToken:
    """Cooperative stop signal observed by the run loop at its checkpoints."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def stop_requested(self) -> bool:
        return self._event.is_set()

    def request_stop(self) -> None:
        self._event.set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return early if a stop is requested."""

        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class ExecutionController:
    """Single-flight owner of the closure run.

    At most one run exists at a time. ``start`` hands the run to a background
    task and returns its job id; ``stop`` only raises the stop flag, so an
    order already being closed always finishes first.
    """

    def __init__(
        self,
        *,
        session_manager: SessionManager,
        listing_client: OrderListingClient,
        workflow: ClosureWorkflow,
        credentials_provider: Callable[[], Credentials],
        notifier: Notifier | None = None,
        empty_poll_interval_seconds: float = DEFAULT_EMPTY_POLL_INTERVAL_SECONDS,
        logger_factory: Callable[[str], JsonLogger] = get_logger,
        clock: Callable[[], datetime] = aware_now,
    ) -> None:
        self._session_manager = session_manager
        self._listing = listing_client
        self._workflow = workflow
        self._credentials = credentials_provider
        self._notifier = notifier or LoggingNotifier()
        self._empty_poll_interval = empty_poll_interval_seconds
        self._logger_factory = logger_factory
        self._clock = clock
        self._state = RunState()
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task[None]] = None
        self._stop: Optional[StopToken] = None

    def status(self) -> RunState:
        return self._state

    async def start(self, job_id: str | None = None) -> str:
        async with self._lock:
            if self._state.is_running:
                raise ConflictError("A closure run is already in progress.")
            resolved_id = job_id or str(uuid.uuid4())
            self._state = RunState(is_running=True, started_at=self._clock(), job_id=resolved_id)
            self._stop = StopToken()
            loop = asyncio.get_running_loop()
            self._task = loop.create_task(self._run(resolved_id, self._stop), name=f"baixa-run-{resolved_id}")
            return resolved_id

    async def stop(self) -> None:
        async with self._lock:
            if not self._state.is_running or self._stop is None:
                raise ConflictError("No closure run in progress.")
            self._stop.request_stop()

    async def wait(self) -> None:
        """Wait for the current run, if any, to finish."""

        task = self._task
        if task is not None:
            await task

    async def list_once(self) -> list[OrderId]:
        logger = self._logger_factory(new_run_id())
        try:
            bundle = await self._session_manager.login(self._credentials(), logger=logger)
            return await asyncio.to_thread(self._listing.list_pending, bundle, logger=logger)
        finally:
            logger.close()

    async def _run(self, job_id: str, stop: StopToken) -> None:
        logger = self._logger_factory(job_id)
        started_at = self._state.started_at or self._clock()
        outcomes: list[ClosureOutcome] = []
        log_event(logger=logger, phase="run", message="Closure run started", job_id=job_id)

        try:
            bundle = await self._login(logger)
            # Set after a re-login; cleared once an order gets past the session check.
            relogged = False
            while not stop.stop_requested:
                order_ids = await asyncio.to_thread(self._listing.list_pending, bundle, logger=logger)
                if not order_ids:
                    log_event(
                        logger=logger,
                        phase="run",
                        message="No pending orders; waiting before next poll",
                        wait_seconds=self._empty_poll_interval,
                    )
                    await stop.wait(self._empty_poll_interval)
                    continue

                session_expired = False
                for order_id in order_ids:
                    if stop.stop_requested:
                        break
                    self._state = replace(self._state, current_order_id=order_id)
                    outcome, halt = await self._process_order(bundle, order_id, started_at, logger=logger)
                    outcomes.append(outcome)
                    if halt:
                        stop.request_stop()
                        break
                    if list(outcome.messages) != [SESSION_EXPIRED]:
                        relogged = False
                        continue
                    if relogged:
                        raise AuthFailure("Session expired again right after a fresh login")
                    session_expired = True
                    break

                if session_expired and not stop.stop_requested:
                    log_event(logger=logger, phase="login", status="warn", message="Session expired; logging in again")
                    bundle = await self._login(logger)
                    relogged = True
        except Exception as exc:
            log_event(
                logger=logger,
                phase="run",
                status="error",
                message="Closure run failed",
                error=str(exc),
                exception=repr(exc),
            )
            await self._notify(
                ErrorEvent(order_id=None, message=f"Run failed: {exc}", started_at=started_at),
                logger=logger,
            )
        finally:
            ended_at = self._clock()
            log_event(
                logger=logger,
                phase="run",
                message="Closure run finished",
                outcome_count=len(outcomes),
                succeeded=sum(1 for outcome in outcomes if outcome.succeeded),
            )
            if outcomes:
                await self._notify(
                    SummaryEvent(outcomes=tuple(outcomes), started_at=started_at, ended_at=ended_at),
                    logger=logger,
                )
            self._state = RunState()
            self._stop = None
            logger.close()

    async def _login(self, logger: JsonLogger) -> AuthenticationBundle:
        return await self._session_manager.login(self._credentials(), logger=logger)

    async def _process_order(
        self,
        bundle: AuthenticationBundle,
        order_id: OrderId,
        run_started_at: datetime,
        *,
        logger: JsonLogger,
    ) -> tuple[ClosureOutcome, bool]:
        """Close one order and report whether the run must halt afterwards."""

        order_started_at = self._clock()
        try:
            outcome = await self._workflow.close(bundle, order_id, logger=logger)
        except Exception as exc:
            log_event(
                logger=logger,
                phase="closure",
                status="error",
                message="Unexpected failure; stopping run",
                order_id=order_id,
                error=str(exc),
                exception=repr(exc),
            )
            await self._notify(
                ErrorEvent(
                    order_id=order_id,
                    message=f"Unexpected failure that stopped the bot: {exc}",
                    started_at=run_started_at,
                ),
                logger=logger,
            )
            return ClosureOutcome.failure(order_id, f"Unexpected failure: {exc}", unexpected=True), True

        log_event(
            logger=logger,
            phase="closure",
            status="ok" if outcome.succeeded else "warn",
            message=f"Order {order_id} => {outcome.describe()}",
            order_id=order_id,
        )
        if outcome.unexpected:
            await self._notify(
                ErrorEvent(order_id=order_id, message="; ".join(outcome.messages), started_at=run_started_at),
                logger=logger,
            )
        elif outcome.succeeded:
            await self._notify(
                SuccessEvent(order_id=order_id, started_at=order_started_at, ended_at=self._clock()),
                logger=logger,
            )
        return outcome, outcome.unexpected

    async def _notify(self, event: NotificationEvent, *, logger: JsonLogger) -> None:
        try:
            await asyncio.to_thread(self._notifier.notify, event)
        except Exception as exc:
            log_event(
                logger=logger,
                phase="notifications",
                status="warn",
                message=f"Failed to send {event.kind.value} notification",
                error=str(exc),
            )


def build_controller(config: Any) -> ExecutionController:
    from zoneinfo import ZoneInfo

    from baixa_os.gcom.browser import BrowserOptions
    from baixa_os.gcom.closure import RetryPolicy
    from baixa_os.notifications import build_notifier

    tz = ZoneInfo(config.portal_timezone)
    options = BrowserOptions(
        headless=config.headless,
        slow_mo_ms=config.slow_mo_ms,
        executable_path=config.chrome_executable or None,
    )
    return ExecutionController(
        session_manager=SessionManager(options=options),
        listing_client=OrderListingClient(rows_per_page=config.rows_per_page),
        workflow=ClosureWorkflow(
            options=options,
            retry_policy=RetryPolicy(
                retries=config.search_retries,
                delay_seconds=config.search_retry_delay_seconds,
            ),
            tz=tz,
        ),
        credentials_provider=config.credentials,
        notifier=build_notifier(config),
        empty_poll_interval_seconds=config.empty_poll_interval_seconds,
        clock=lambda: aware_now(tz),
    )
