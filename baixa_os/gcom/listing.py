"""Pending-order listing over plain HTTP.

The control page is a JSF/PrimeFaces view. Instead of driving a browser, the
client replays the AJAX calls the page itself makes: load the view, switch the
tab panel to "Recebidas", change the grid page size, then parse the grid
fragment from the partial response.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Mapping
from urllib.parse import parse_qs, urlparse

import requests

from baixa_os.common.json_logger import JsonLogger, log_event, short_token
from baixa_os.gcom import page_selectors
from baixa_os.gcom.listing_parser import RESULTS_GRID_ID, parse_order_ids
from baixa_os.gcom.models import AuthenticationBundle, OrderId, ProtocolFailure

DEFAULT_ROWS_PER_PAGE = 100
REQUEST_TIMEOUT_SECONDS = 30
INITIAL_VIEW_PARAMS = {"id": "1111"}
FORM_ACTION_EXECUTION_PATTERN = re.compile(r"action=\"[^\"]*execution=([^\"&]+)", re.S)
VIEW_STATE_PATTERN = re.compile(r"name=\"javax\.faces\.ViewState\"[^>]+value=\"([^\"]+)\"", re.S)

PARTIAL_AJAX_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
    "Faces-Request": "partial/ajax",
    "X-Requested-With": "XMLHttpRequest",
}
RECEIVED_TAB_FORM = "abas:formRecebidas"


def execution_from_response_url(url: str | None) -> str | None:
    if not url:
        return None
    values = parse_qs(urlparse(url).query).get("execution")
    return values[0] if values else None


def build_tab_change_payload(view_state: str) -> Dict[str, str]:
    return {
        "javax.faces.partial.ajax": "true",
        "javax.faces.source": "abas",
        "javax.faces.partial.execute": "abas",
        "javax.faces.partial.render": "formBotoes formPesquisa abas",
        "javax.faces.behavior.event": "tabChange",
        "javax.faces.partial.event": "tabChange",
        "abas_contentLoad": "true",
        "abas_newTab": "abas:recebidas",
        "abas_tabindex": "0",
        "j_idt52": "j_idt52",
        "j_idt52:filtroRapidoInscricao": "",
        "javax.faces.ViewState": view_state,
    }


def build_page_size_payload(view_state: str, rows_per_page: int) -> Dict[str, str]:
    grid = RESULTS_GRID_ID
    return {
        "javax.faces.partial.ajax": "true",
        "javax.faces.source": grid,
        "javax.faces.partial.execute": grid,
        "javax.faces.partial.render": grid,
        grid: grid,
        f"{grid}_pagination": "true",
        f"{grid}_first": "0",
        f"{grid}_rows": str(rows_per_page),
        f"{grid}_skipChildren": "true",
        f"{grid}_encodeFeature": "true",
        RECEIVED_TAB_FORM: RECEIVED_TAB_FORM,
        f"{grid}_rppDD": str(rows_per_page),
        f"{grid}_selection": "",
        "javax.faces.ViewState": view_state,
    }


class OrderListingClient:
    """List the orders waiting in the "Recebidas" tab."""

    def __init__(
        self,
        *,
        rows_per_page: int = DEFAULT_ROWS_PER_PAGE,
        session: requests.Session | None = None,
        base_url: str = page_selectors.LISTING_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.rows_per_page = rows_per_page
        self.base_url = base_url
        self.timeout = timeout
        self._session = session or requests.Session()

    def list_pending(self, bundle: AuthenticationBundle, *, logger: JsonLogger) -> list[OrderId]:
        log_event(
            logger=logger,
            phase="listing",
            message="Listing pending orders",
            rows_per_page=self.rows_per_page,
        )
        cookie_headers = {"Cookie": bundle.cookie_header()}

        execution, view_state = self._load_view(cookie_headers, logger=logger)
        action_url = f"{self.base_url}?execution={execution}"

        self._post(action_url, build_tab_change_payload(view_state), cookie_headers)
        log_event(logger=logger, phase="listing", message="Received tab activated")

        response = self._post(
            action_url,
            build_page_size_payload(view_state, self.rows_per_page),
            cookie_headers,
        )
        order_ids = parse_order_ids(response.text)
        log_event(
            logger=logger,
            phase="listing",
            message="Pending orders parsed",
            order_count=len(order_ids),
            order_ids=order_ids,
        )
        return order_ids

    def _load_view(self, cookie_headers: Mapping[str, str], *, logger: JsonLogger) -> tuple[str, str]:
        response = self._session.get(
            self.base_url,
            params=INITIAL_VIEW_PARAMS,
            headers=dict(cookie_headers),
            timeout=self.timeout,
        )
        response.raise_for_status()
        body = response.text

        execution = execution_from_response_url(response.url)
        if execution is None:
            execution = _first_group(FORM_ACTION_EXECUTION_PATTERN, body)
        view_state = _first_group(VIEW_STATE_PATTERN, body)

        log_event(
            logger=logger,
            phase="listing",
            message="Control view loaded",
            http_status=response.status_code,
            final_url=response.url,
            execution=short_token(execution),
            view_state=short_token(view_state),
        )
        if execution is None:
            raise ProtocolFailure("Could not determine the 'execution' parameter of the control view")
        if view_state is None:
            raise ProtocolFailure("javax.faces.ViewState not found in the control view")
        return execution, view_state

    def _post(self, url: str, payload: Mapping[str, str], cookie_headers: Mapping[str, str]) -> Any:
        response = self._session.post(
            url,
            data=dict(payload),
            headers={**PARTIAL_AJAX_HEADERS, **cookie_headers},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response

    def close(self) -> None:
        self._session.close()


def _first_group(pattern: re.Pattern[str], text: str) -> str | None:
    match = pattern.search(text or "")
    return match.group(1) if match else None
