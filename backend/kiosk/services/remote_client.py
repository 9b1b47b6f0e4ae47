"""
Remote Ticket Service Client

Async client for the authoritative ticket server. The base URL is operator
configurable and persisted in the local key-value table; when nothing is
stored the built-in default from settings is used.

Every call carries a fixed timeout. Transport failures, timeouts and bodies
that are not the expected JSON surface as ConnectivityError; a 4xx answer that
carries a business code surfaces as RemoteBusinessError. Callers catch
REMOTE_ERRORS per call.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from kiosk.core import messages
from kiosk.core.config import settings
from kiosk.core.exceptions import ConnectivityError, RemoteBusinessError
from kiosk.models import Ticket
from kiosk.schemas.remote import RemotePeriod, RemoteTicket, RemoteUser, TicketPayload
from kiosk.services.local_store import LocalStore

logger = logging.getLogger(__name__)

API_URL_KEY = "config.api_url"

STATUS_OK = "ok"
STATUS_LIMIT_REACHED = "limit_reached"
STATUS_ERROR = "error"

# Business code the server answers with when the user already used the meal
LIMIT_REACHED_CODE = "limitcomidauser"

REMOTE_ERRORS = (ConnectivityError, RemoteBusinessError)


@dataclass
class TotalResult:
    success: bool
    count: int = 0

    def pages(self, page_size: int) -> int:
        if not self.success or self.count <= 0:
            return 0
        return math.ceil(self.count / page_size)


@dataclass
class TicketPage:
    status: str
    tickets: List[RemoteTicket] = field(default_factory=list)


@dataclass
class CreateTicketResult:
    status: str
    server_ticket_id: Optional[int] = None
    error_code: Optional[str] = None

    @property
    def resolved(self) -> bool:
        """The server holds the ticket: created now, or already accounted for."""
        return self.status in (STATUS_OK, STATUS_LIMIT_REACHED)


def _error_code(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("code") if isinstance(body, dict) else None


def format_remote_date(day: date) -> str:
    return day.strftime("%d-%m-%Y")


def normalize_api_url(url: str) -> str:
    url = (url or "").strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        raise ValueError("API URL must start with http:// or https://")
    return url


class RemoteTicketService:
    """Client for the remote ticket, period and roster endpoints."""

    def __init__(
        self,
        store: LocalStore,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self._transport = transport

    # ==================== BASE URL ====================

    def get_base_url(self) -> str:
        stored = self.store.get_setting(API_URL_KEY)
        return stored or settings.default_api_url

    def set_base_url(self, url: str) -> str:
        url = normalize_api_url(url)
        self.store.set_setting(API_URL_KEY, url)
        logger.info(f"Remote API URL set to {url}")
        return url

    def reset_base_url(self) -> str:
        self.store.delete_setting(API_URL_KEY)
        logger.info(f"Remote API URL reset to default {settings.default_api_url}")
        return settings.default_api_url

    # ==================== TRANSPORT ====================

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.get_base_url(),
            timeout=self.timeout,
            transport=self._transport,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        accept_client_errors: bool = False,
    ) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, path, params=params, json=json)
        except httpx.RequestError as e:
            logger.warning(f"Remote {method} {path} failed: {e}")
            raise ConnectivityError(messages.NO_CONNECTION) from e

        if response.status_code >= 500 or (
            response.status_code >= 400 and not accept_client_errors
        ):
            logger.warning(f"Remote {method} {path} returned {response.status_code}: {response.text[:200]}")
            code = _error_code(response)
            if response.status_code < 500 and code:
                raise RemoteBusinessError(code)
            raise ConnectivityError(f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            logger.warning(f"Remote {method} {path} returned a non-JSON body")
            raise ConnectivityError(messages.REMOTE_REJECTED) from e

        if not isinstance(body, dict):
            raise ConnectivityError(messages.REMOTE_REJECTED)
        return body

    async def ping(self) -> bool:
        """True when the server answers at all, whatever the status code."""
        try:
            async with self._client() as client:
                await client.get("/")
            return True
        except httpx.RequestError as e:
            logger.info(f"Remote service unreachable: {e}")
            return False

    # ==================== TICKETS ====================

    async def get_total_tickets_in_range(self, start: date, end: date) -> TotalResult:
        body = await self._request(
            "GET",
            "/GETTtotalTicketsWithDate",
            params={"fecha_inicio": format_remote_date(start), "fecha_fin": format_remote_date(end)},
        )
        if not body.get("success"):
            return TotalResult(success=False)
        try:
            count = int(body.get("data") or 0)
        except (TypeError, ValueError) as e:
            raise ConnectivityError(messages.SYNC_TOTAL_FAILED) from e
        return TotalResult(success=True, count=count)

    async def get_tickets_in_range(
        self, start: date, end: date, page: int, page_size: Optional[int] = None
    ) -> TicketPage:
        body = await self._request(
            "GET",
            "/GETallTicketsWithDate",
            params={
                "fecha_inicio": format_remote_date(start),
                "fecha_fin": format_remote_date(end),
                "page": page,
                "pageSize": page_size or settings.ticket_page_size,
            },
        )
        if body.get("sms") != STATUS_OK:
            return TicketPage(status=STATUS_ERROR)

        data = body.get("data") or {}
        raw = data.get("tickets") if isinstance(data, dict) else data
        if not isinstance(raw, list):
            raw = []
        tickets = []
        for item in raw:
            try:
                tickets.append(RemoteTicket.model_validate(item))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed remote ticket: {e.errors()[:1]}")
        return TicketPage(status=STATUS_OK, tickets=tickets)

    async def create_ticket(self, ticket: Ticket) -> CreateTicketResult:
        payload = TicketPayload(
            user_external_id=ticket.user_external_id,
            meal_external_id=ticket.meal_external_id,
            period_external_id=ticket.period_external_id,
            created_at=ticket.created_at,
            uuid=ticket.uuid,
        )
        body = await self._request(
            "POST",
            "/POSTcreateTicket",
            json=payload.model_dump(by_alias=True),
            accept_client_errors=True,
        )

        if body.get("sms") == STATUS_OK:
            data = body.get("data") or {}
            server_id = data.get("pre_ticket_id") if isinstance(data, dict) else None
            return CreateTicketResult(status=STATUS_OK, server_ticket_id=server_id or None)
        if body.get("code") == LIMIT_REACHED_CODE:
            return CreateTicketResult(status=STATUS_LIMIT_REACHED, error_code=STATUS_LIMIT_REACHED)
        return CreateTicketResult(status=STATUS_ERROR, error_code=body.get("code"))

    # ==================== PERIOD & ROSTER ====================

    async def get_today_period(self) -> Optional[RemotePeriod]:
        body = await self._request("GET", "/GETtodayPeriodo")
        data = body.get("data")
        if not isinstance(data, dict) or not data.get("pre_periodo_id"):
            return None
        try:
            return RemotePeriod.model_validate(data)
        except PydanticValidationError as e:
            raise ConnectivityError(messages.PERIOD_LOAD_FAILED) from e

    async def get_user_count(self) -> int:
        body = await self._request("GET", "/GETotalAllUsers")
        if body.get("sms") != STATUS_OK:
            return 0
        try:
            return int(body.get("data") or 0)
        except (TypeError, ValueError) as e:
            raise ConnectivityError(messages.ROSTER_LOAD_FAILED) from e

    async def get_users_page(
        self, page: int, page_size: Optional[int] = None, active_only: bool = True
    ) -> List[RemoteUser]:
        body = await self._request(
            "GET",
            "/GETallUsers",
            params={
                "page": page,
                "pageSize": page_size or settings.user_page_size,
                "estado": "true" if active_only else "false",
            },
        )
        data = body.get("data")
        users = []
        for item in data if isinstance(data, list) else []:
            try:
                users.append(RemoteUser.model_validate(item))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed remote user: {e.errors()[:1]}")
        return users

    async def get_user_by_code(self, code: str) -> Optional[RemoteUser]:
        body = await self._request("GET", f"/GETuserByCode/{code}", accept_client_errors=True)
        data = body.get("data")
        if not isinstance(data, dict):
            return None
        try:
            return RemoteUser.model_validate(data)
        except PydanticValidationError:
            return None
