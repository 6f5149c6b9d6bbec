"""Push gateway - transport to the vendor push service.

The dispatcher talks to a ``PushGateway``. ``FCMGateway`` delivers through the
Firebase Cloud Messaging HTTP v1 API (Android, iOS and web tokens alike);
``DisabledGateway`` stands in when push is not configured so the rest of the
service keeps working and reports ``PUSH_DISABLED`` per send.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from ..config import is_push_configured
from .message import PushMessage, PushPriority

logger = logging.getLogger(__name__)

# FCM HTTP v1 API endpoint
FCM_API_URL_TEMPLATE = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"

# OAuth 2.0 scope for FCM
FCM_SCOPES = ["https://www.googleapis.com/auth/firebase.messaging"]

FCM_ERROR_TYPE = "type.googleapis.com/google.firebase.fcm.v1.FcmError"

# Throttling and server statuses; any other status keeps the body's own `status`
STATUS_CODE_FALLBACK = {
    429: "QUOTA_EXCEEDED",
    500: "INTERNAL",
    502: "UNAVAILABLE",
    503: "UNAVAILABLE",
    504: "DEADLINE_EXCEEDED",
}

# FCM names the token in INVALID_ARGUMENT messages when the token itself is bad
INVALID_TOKEN_HINT = "registration token"


class GatewayError(Exception):
    """A gateway call failed; ``code`` is what the failure policy classifies."""

    def __init__(self, code: str, message: str = ""):
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message or code


class PushGateway(ABC):
    """Contract for push transports."""

    @abstractmethod
    async def send_to_token(self, token: str, message: PushMessage) -> str:
        """Send to one raw token and return the gateway message id."""

    @abstractmethod
    async def send_to_topic(self, topic: str, message: PushMessage) -> str:
        """Send to every device subscribed to ``topic``."""

    @abstractmethod
    async def validate_token(self, token: str) -> bool:
        """Check whether the gateway would accept ``token``.

        Returns False for tokens the gateway rejects; raises GatewayError when
        the answer is unknown (transport failure, outage).
        """

    async def close(self) -> None:
        """Release transport resources."""


class DisabledGateway(PushGateway):
    """Gateway used while push is switched off or not configured."""

    def __init__(self, reason: str = "Push notifications are disabled"):
        self.reason = reason

    async def send_to_token(self, token: str, message: PushMessage) -> str:
        logger.debug(f"Push disabled - would send to {token[:16]}...: {message.title}")
        raise GatewayError("PUSH_DISABLED", self.reason)

    async def send_to_topic(self, topic: str, message: PushMessage) -> str:
        logger.debug(f"Push disabled - would send to topic {topic}: {message.title}")
        raise GatewayError("PUSH_DISABLED", self.reason)

    async def validate_token(self, token: str) -> bool:
        raise GatewayError("PUSH_DISABLED", self.reason)


class FCMGateway(PushGateway):
    """Firebase Cloud Messaging HTTP v1 gateway.

    Uses OAuth 2.0 service account credentials, loaded from a JSON file path
    or from the JSON content itself (for containerized deployments).
    """

    def __init__(
        self,
        project_id: str,
        credentials_file: Optional[str] = None,
        service_account_json: Optional[str] = None,
        timeout_seconds: float = 10.0,
        default_sound: str = "default",
        default_ttl_seconds: int = 86400,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not credentials_file and not service_account_json:
            raise ValueError("FCM gateway needs a credentials file or service account JSON")
        self.project_id = project_id
        self.api_url = FCM_API_URL_TEMPLATE.format(project_id=project_id)
        self.timeout_seconds = timeout_seconds
        self.default_sound = default_sound
        self.default_ttl_seconds = default_ttl_seconds
        self._credentials_file = credentials_file
        self._service_account_json = service_account_json
        self._credentials = None
        self._credentials_lock = asyncio.Lock()
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "FCMGateway":
        return cls(
            project_id=settings.fcm_project_id,
            credentials_file=settings.fcm_credentials_file,
            service_account_json=settings.fcm_service_account_json,
            timeout_seconds=settings.fcm_timeout_seconds,
            default_sound=settings.push_default_sound,
            default_ttl_seconds=settings.push_default_ttl_seconds,
        )

    def _load_credentials(self):
        """Load service account credentials."""
        if self._credentials is not None:
            return self._credentials

        if self._service_account_json:
            info = json.loads(self._service_account_json)
            self._credentials = service_account.Credentials.from_service_account_info(
                info, scopes=FCM_SCOPES
            )
        else:
            self._credentials = service_account.Credentials.from_service_account_file(
                self._credentials_file, scopes=FCM_SCOPES
            )
        logger.info(f"FCM credentials loaded for project {self.project_id}")
        return self._credentials

    async def _get_access_token(self) -> str:
        """Get a valid OAuth 2.0 access token, refreshing if needed."""
        async with self._credentials_lock:
            credentials = self._load_credentials()
            if not credentials.valid:
                # Refresh is blocking, keep it off the event loop
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, lambda: credentials.refresh(Request()))
            return credentials.token

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def build_message(self, message: PushMessage, token: Optional[str] = None, topic: Optional[str] = None) -> Dict[str, Any]:
        """Build an FCM v1 message payload with per-platform options."""
        sound = message.sound or self.default_sound
        ttl = message.ttl_seconds or self.default_ttl_seconds
        urgent = message.priority == PushPriority.HIGH

        notification: Dict[str, Any] = {"title": message.title, "body": message.body}
        if message.image_url:
            notification["image"] = message.image_url

        android_notification: Dict[str, Any] = {"sound": sound}
        if message.click_action:
            android_notification["click_action"] = message.click_action

        aps: Dict[str, Any] = {"sound": sound}
        if message.badge is not None:
            aps["badge"] = message.badge
        if message.click_action:
            aps["category"] = message.click_action

        payload: Dict[str, Any] = {
            "notification": notification,
            "android": {
                "priority": "high" if urgent else "normal",
                "ttl": f"{ttl}s",
                "notification": android_notification,
            },
            "apns": {
                "headers": {"apns-priority": "10" if urgent else "5"},
                "payload": {"aps": aps},
            },
            "webpush": {
                "headers": {"Urgency": message.priority.value, "TTL": str(ttl)},
                "notification": {"title": message.title, "body": message.body},
            },
        }
        if message.image_url:
            payload["webpush"]["notification"]["icon"] = message.image_url
        if message.data:
            payload["data"] = dict(message.data)
        if token is not None:
            payload["token"] = token
        if topic is not None:
            payload["topic"] = topic
        return payload

    async def _post(self, payload: Dict[str, Any], validate_only: bool = False) -> str:
        """POST a message to FCM; return its name or raise GatewayError."""
        access_token = await self._get_access_token()
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        body: Dict[str, Any] = {"message": payload}
        if validate_only:
            body["validate_only"] = True

        try:
            response = await self._get_client().post(self.api_url, headers=headers, json=body)
        except httpx.TimeoutException as e:
            raise GatewayError("TIMEOUT", str(e) or "FCM request timed out") from e
        except httpx.TransportError as e:
            raise GatewayError("NETWORK_ERROR", str(e) or "FCM transport error") from e

        if response.status_code == 200:
            return response.json().get("name", "")

        code, detail = parse_fcm_error(response)
        raise GatewayError(code, detail)

    async def send_to_token(self, token: str, message: PushMessage) -> str:
        message_id = await self._post(self.build_message(message, token=token))
        logger.debug(f"FCM send success to {token[:16]}...: {message_id}")
        return message_id

    async def send_to_topic(self, topic: str, message: PushMessage) -> str:
        message_id = await self._post(self.build_message(message, topic=topic))
        logger.info(f"FCM topic send success to {topic}: {message_id}")
        return message_id

    async def validate_token(self, token: str) -> bool:
        dry_run = PushMessage(title="Validation", body="Token validation")
        try:
            await self._post(self.build_message(dry_run, token=token), validate_only=True)
        except GatewayError as e:
            if e.code in ("UNREGISTERED", "INVALID_ARGUMENT", "INVALID_REGISTRATION", "SENDER_ID_MISMATCH"):
                return False
            raise
        return True


def parse_fcm_error(response: httpx.Response) -> tuple[str, str]:
    """Pull the FCM error code and message out of an error response.

    Only the ``FcmError`` detail speaks about the token. Without it the code
    comes from the status map (429, 5xx) or the body's ``status``, such as
    NOT_FOUND for a wrong project or PERMISSION_DENIED for bad credentials.
    """
    try:
        error = response.json().get("error", {})
    except ValueError:
        error = {}

    message = error.get("message") or response.text or f"HTTP {response.status_code}"
    for detail in error.get("details", []):
        if detail.get("@type") == FCM_ERROR_TYPE and detail.get("errorCode"):
            code = detail["errorCode"]
            break
    else:
        code = STATUS_CODE_FALLBACK.get(response.status_code) or error.get("status")
        if not code:
            code = "INTERNAL" if response.status_code >= 500 else "UNKNOWN_ERROR"

    if code == "INVALID_ARGUMENT" and INVALID_TOKEN_HINT in message.lower():
        code = "INVALID_REGISTRATION"
    return code, message


def build_gateway(settings) -> PushGateway:
    """Pick the gateway the current settings allow."""
    if not settings.push_enabled:
        logger.info("Push notifications are disabled")
        return DisabledGateway()
    if not is_push_configured(settings):
        logger.warning("Push notifications enabled but FCM not fully configured")
        return DisabledGateway("FCM is not fully configured")

    logger.info(f"FCM gateway configured for project {settings.fcm_project_id}")
    return FCMGateway.from_settings(settings)
