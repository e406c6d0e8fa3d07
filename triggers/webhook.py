"""
Webhook trigger source and the HTTP ingress registry.

Each webhook trigger owns one event-name route. Calls are authenticated with
a shared secret and acknowledged right away; the mint pipeline runs afterwards
on its own task, so the caller never waits for it.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional

from common.errors import AuthenticationError, ConfigurationError

from .base import TriggerSource
from .models import TriggerKind, WebhookTriggerConfig

logger = logging.getLogger(__name__)

WEBHOOK_PATH_PREFIX = "/api/webhook"
SECRET_HEADERS = ("x-webhook-key", "x-ifttt-key")


class RateLimiter:
    """Simple in-memory rate limiter."""

    def __init__(self):
        self.requests: Dict[str, List[float]] = defaultdict(list)

    def is_allowed(self, key: str, limit: int, window: int) -> bool:
        """
        Check if request is allowed.

        Args:
            key: Unique key (e.g., event name)
            limit: Max requests allowed
            window: Time window in seconds

        Returns:
            True if allowed, False if rate limited
        """
        now = time.time()
        self.requests[key] = [t for t in self.requests[key] if now - t < window]

        if len(self.requests[key]) >= limit:
            return False

        self.requests[key].append(now)
        return True

    def reset(self, key: str) -> None:
        self.requests.pop(key, None)


class WebhookHandler:
    """
    Ingress registry for webhook triggers.

    Maps event names to running sources and processes incoming requests.
    """

    def __init__(self, base_url: str = ""):
        self.base_url = base_url.rstrip("/")
        self.routes: Dict[str, "WebhookTriggerSource"] = {}
        self.rate_limiter = RateLimiter()

    def register(self, source: "WebhookTriggerSource") -> str:
        """Register a route for ``source``. Returns the endpoint path."""
        event_name = source.config.event_name
        existing = self.routes.get(event_name)
        if existing is not None and existing is not source:
            raise ConfigurationError(
                f"Webhook event {event_name!r} is already used by trigger {existing.trigger_id}"
            )
        self.routes[event_name] = source
        path = f"{WEBHOOK_PATH_PREFIX}/{event_name}"
        logger.info(f"[webhook] Registered webhook for trigger {source.trigger_id} at {path}")
        return path

    def unregister(self, source: "WebhookTriggerSource") -> bool:
        """Remove the route owned by ``source``. A replaced route is left alone."""
        event_name = source.config.event_name
        if self.routes.get(event_name) is not source:
            return False
        del self.routes[event_name]
        self.rate_limiter.reset(event_name)
        logger.info(f"[webhook] Removed webhook route {event_name!r}")
        return True

    def get_source(self, event_name: str) -> Optional["WebhookTriggerSource"]:
        return self.routes.get(event_name)

    def handle_request(
        self,
        event_name: str,
        query_params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Handle an incoming webhook call.

        Returns a response dict carrying ``status_code``. The activation is
        queued before returning; nothing here waits for the mint.
        """
        source = self.routes.get(event_name)
        if source is None or not source.is_active:
            return {"success": False, "error": "Webhook not found", "status_code": 404}

        try:
            source.authenticate(_extract_secret(query_params or {}, headers or {}))
        except AuthenticationError as e:
            logger.warning(f"[webhook] Rejected call for {event_name!r}: {e}")
            return {"success": False, "error": "Invalid secret key", "status_code": 401}

        # Only authenticated calls count against the route's budget
        limit = source.config.rate_limit
        if limit and not self.rate_limiter.is_allowed(event_name, limit, source.config.rate_limit_window):
            return {"success": False, "error": "Rate limit exceeded", "status_code": 429}

        logger.info(f"[webhook] Received webhook for event {event_name!r}")
        source.fire()

        return {
            "success": True,
            "message": "Webhook received",
            "trigger_id": source.trigger_id,
            "status_code": 200,
        }


def _extract_secret(query_params: Dict[str, str], headers: Dict[str, str]) -> Optional[str]:
    if query_params.get("key"):
        return query_params["key"]
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in SECRET_HEADERS:
        if lowered.get(name):
            return lowered[name]
    auth = lowered.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return None


class WebhookTriggerSource(TriggerSource):
    """Fires on an authenticated POST to its event route."""

    kind = TriggerKind.WEBHOOK

    def __init__(self, trigger_id: str, config: WebhookTriggerConfig, handler: "WebhookHandler"):
        super().__init__(trigger_id)
        self.config = config
        self.handler = handler
        self._secret: Optional[str] = None
        self.path: Optional[str] = None

    async def _open(self) -> None:
        # Generated secrets live until the source is stopped
        self._secret = self.config.secret_key or secrets.token_hex(16)
        self.path = self.handler.register(self)
        if not self.config.secret_key:
            logger.info(f"[webhook] Generated secret for trigger {self.trigger_id}; see get_webhook_url()")

    async def _close(self) -> None:
        self.handler.unregister(self)
        self._secret = None

    def authenticate(self, provided: Optional[str]) -> None:
        if self._secret is None:
            raise AuthenticationError("webhook source is not running")
        if not provided or not hmac.compare_digest(provided.encode(), self._secret.encode()):
            raise AuthenticationError("secret key mismatch")

    def fire(self) -> None:
        self._emit()

    def get_webhook_url(self) -> Optional[str]:
        """Full URL including the secret, or None while stopped."""
        if self._secret is None:
            return None
        return f"{self.handler.base_url}{WEBHOOK_PATH_PREFIX}/{self.config.event_name}?key={self._secret}"

    def describe(self) -> Dict[str, Any]:
        data = super().describe()
        data["path"] = f"{WEBHOOK_PATH_PREFIX}/{self.config.event_name}"
        return data


# Global webhook handler instance
_webhook_handler: Optional[WebhookHandler] = None


def get_webhook_handler(base_url: str = "") -> WebhookHandler:
    """Get the global webhook handler instance."""
    global _webhook_handler
    if _webhook_handler is None:
        _webhook_handler = WebhookHandler(base_url=base_url)
    return _webhook_handler
