from typing import Any, Optional

import httpx

from leaddesk.config import settings
from leaddesk.logging_config import get_logger

logger = get_logger("api_client")


class ApiError(Exception):
    """Backend call failed: non-2xx response or transport error (status_code 0)."""

    def __init__(self, status_code: int, message: str, details: Any = None):
        self.status_code = status_code
        self.message = message
        self.details = details
        super().__init__(message)


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return (text or f"API error {response.status_code}"), None

    if not isinstance(body, dict):
        return str(body), None
    error = body.get("error")
    raw = (error.get("message") if isinstance(error, dict) else None) or error or body.get("message") or body
    message = raw if isinstance(raw, str) else str(raw)
    return message, body.get("details")


class LeadApiClient:
    """Async client for the dashboard backend (JSON over HTTP)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        company_id: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.token = token if token is not None else settings.api_token
        self.company_id = company_id if company_id is not None else settings.company_id
        timeout = timeout_seconds if timeout_seconds is not None else settings.http_timeout_seconds
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "LeadApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.company_id:
            headers["x-company-id"] = self.company_id
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ApiError(0, f"Network error: {e}") from e

        logger.debug(f"{method} {path} -> {response.status_code}")

        if response.status_code >= 400:
            message, details = _error_message(response)
            logger.warning(f"{method} {path} error {response.status_code}: {message}")
            raise ApiError(response.status_code, message, details)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get_conversation(self, company_id: str, lead_id: str) -> dict:
        return await self._request("GET", f"/api/companies/{company_id}/leads/{lead_id}/conversation")

    async def send_message(
        self,
        company_id: str,
        lead_id: str,
        content: str,
        role: str = "user",
        conversation_id: Optional[str] = None,
    ) -> dict:
        body = {"role": role, "content": content}
        if conversation_id:
            body["conversation_id"] = conversation_id
        return await self._request("POST", f"/api/companies/{company_id}/leads/{lead_id}/messages", json=body)

    async def ai_reply(self, company_id: str, lead_id: str) -> dict:
        return await self._request("POST", f"/api/companies/{company_id}/leads/{lead_id}/ai-reply")

    async def send_voice_message(
        self,
        conversation_key: str,
        audio: bytes,
        filename: str = "voice.webm",
        mime_type: str = "audio/webm",
    ) -> Optional[dict]:
        if not audio:
            raise ValueError("audio is empty")
        files = {"audio": (filename, audio, mime_type)}
        return await self._request("POST", f"/api/conversations/{conversation_key}/voice-message", files=files)

    async def upload_attachment(
        self,
        lead_id: str,
        filename: str,
        content: bytes,
        mime_type: str = "application/octet-stream",
    ) -> Optional[dict]:
        files = {"file": (filename, content, mime_type)}
        return await self._request("POST", f"/api/leads/{lead_id}/attachments", files=files)

    async def get_scheduling_settings(self) -> dict:
        return await self._request("GET", "/api/settings/scheduling")

    async def get_available_slots(
        self,
        appointment_type: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> Any:
        params = {}
        if appointment_type:
            params["type"] = appointment_type
        if date_from:
            params["from"] = date_from
        if date_to:
            params["to"] = date_to
        return await self._request("GET", "/api/appointments/availability", params=params)

    async def book_slot(
        self,
        company_id: str,
        lead_id: str,
        start: str,
        end: Optional[str] = None,
        slot_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        appointment_type: Optional[str] = None,
        timezone: Optional[str] = None,
        source: str = "chatbot",
    ) -> dict:
        """Confirm a slot; older deployments only expose the lead-scoped endpoint."""
        payload = {
            "company_id": company_id,
            "lead_id": lead_id,
            "slot_id": slot_id,
            "start_at": start,
            "startAt": start,
            "end_at": end,
            "endAt": end,
            "appointment_type": appointment_type,
            "timezone": timezone,
            "source": source,
            "conversation_id": conversation_id,
        }
        payload = {key: value for key, value in payload.items() if value is not None}
        try:
            return await self._request("POST", "/api/scheduling/book-slot", json=payload)
        except ApiError as e:
            if e.status_code != 404:
                raise
            logger.info("book-slot endpoint missing, using lead-scoped fallback")
            return await self._request(
                "POST", f"/api/companies/{company_id}/leads/{lead_id}/book-slot", json=payload
            )


def describe_error(error: BaseException) -> str:
    """Human-readable message for a notification."""
    if isinstance(error, ApiError) and error.message:
        return error.message
    text = str(error)
    return text or "An unexpected error occurred. Please try again."
