"""
Hosted checkout bridge

Server-side counterpart of the Razorpay checkout widget. The adapter builds
a widget instance exactly like the browser SDK's ``new Razorpay(options)``;
``open()`` publishes the session so the browser can render the modal, and
the callback routes relay the modal's outcome back through ``complete``,
``dismiss`` and ``fail``, which fire the widget's ``handler``,
``modal.ondismiss`` and ``payment.failed`` callbacks.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from snapfest.core.config import settings
from snapfest.core.exceptions import CheckoutFailed, NotFoundError
from snapfest.core.logging_config import logger
from snapfest.schemas.payment import GatewayCallback
from snapfest.utils.backoff import retry_with_backoff

# Option keys that never leave the server
_CALLBACK_KEYS = ("handler", "modal")


class HostedCheckout:
    """One checkout widget instance bound to a single gateway order"""

    def __init__(self, bridge: "HostedCheckoutBridge", options: Dict[str, Any]):
        if not options.get("order_id"):
            raise CheckoutFailed("Checkout options must carry an order_id")
        self.bridge = bridge
        self.options = options
        self.order_id: str = options["order_id"]
        self.opened_at: Optional[datetime] = None
        self.closed = False
        self._failure_handlers: List[Callable[[Dict[str, Any]], None]] = []

    def on(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        if event != "payment.failed":
            raise ValueError(f"Unsupported checkout event: {event}")
        self._failure_handlers.append(callback)

    def open(self) -> None:
        self.opened_at = datetime.now(timezone.utc)
        self.bridge._publish(self)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.bridge._withdraw(self)

    def public_options(self) -> Dict[str, Any]:
        """Widget options the browser needs to render the modal"""
        public = {k: v for k, v in self.options.items() if k not in _CALLBACK_KEYS}
        public["opened_at"] = self.opened_at.isoformat() if self.opened_at else None
        return public

    def _succeed(self, response: Dict[str, str]) -> None:
        self.close()
        self.options["handler"](response)

    def _dismiss(self) -> None:
        self.close()
        ondismiss = (self.options.get("modal") or {}).get("ondismiss")
        if ondismiss is not None:
            ondismiss()

    def _fail(self, reason: str) -> None:
        self.close()
        response = {"error": {"description": reason, "metadata": {"order_id": self.order_id}}}
        for callback in self._failure_handlers:
            callback(response)


class HostedCheckoutBridge:
    """Registry of open checkout sessions, keyed by gateway order id"""

    def __init__(self, key_id: Optional[str] = None):
        self.key_id = key_id
        self._sessions: Dict[str, HostedCheckout] = {}

    def checkout(self, options: Dict[str, Any]) -> HostedCheckout:
        """Construct a widget instance (``new Razorpay(options)``)"""
        return HostedCheckout(self, options)

    def current_session(self) -> Optional[Dict[str, Any]]:
        """Options of the most recently opened session, if any is open"""
        if not self._sessions:
            return None
        latest = list(self._sessions.values())[-1]
        return latest.public_options()

    def complete(self, order_id: str, payload: GatewayCallback) -> None:
        """
        Relay the widget's success handler

        Raises:
            NotFoundError: No open session for ``order_id``
            CheckoutFailed: Payload belongs to a different order
        """
        session = self._get(order_id)
        if payload.razorpay_order_id != order_id:
            reason = (
                f"Gateway response for order {payload.razorpay_order_id} "
                f"does not match open order {order_id}"
            )
            logger.error(reason)
            session._fail(reason)
            raise CheckoutFailed(reason)

        logger.info(f"Checkout session {order_id} completed: payment {payload.razorpay_payment_id}")
        session._succeed(payload.model_dump())

    def dismiss(self, order_id: str) -> None:
        """Relay the modal being closed without paying"""
        session = self._get(order_id)
        logger.info(f"Checkout session {order_id} dismissed by user")
        session._dismiss()

    def fail(self, order_id: str, reason: str) -> None:
        """Relay a payment failure reported by the widget"""
        session = self._get(order_id)
        logger.warning(f"Checkout session {order_id} failed: {reason}")
        session._fail(reason)

    def _get(self, order_id: str) -> HostedCheckout:
        session = self._sessions.get(order_id)
        if session is None:
            raise NotFoundError(f"No open checkout session for order {order_id}")
        return session

    def _publish(self, session: HostedCheckout) -> None:
        self._sessions[session.order_id] = session
        logger.debug(f"Checkout session published: {session.order_id}")

    def _withdraw(self, session: HostedCheckout) -> None:
        if self._sessions.get(session.order_id) is session:
            del self._sessions[session.order_id]


async def load_checkout_sdk(
    url: Optional[str] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
    attempts: Optional[int] = None,
    sleep: Callable[[float], Any] = asyncio.sleep,
) -> HostedCheckoutBridge:
    """
    Wait for the hosted checkout script to be reachable and return the bridge

    Probes ``checkout.js`` with bounded exponential backoff.

    Raises:
        CheckoutFailed: Script unreachable after all attempts
    """
    url = url or settings.RAZORPAY_CHECKOUT_JS_URL
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=settings.BACKEND_TIMEOUT)

    async def probe() -> None:
        response = await client.get(url)
        response.raise_for_status()

    try:
        await retry_with_backoff(
            probe,
            attempts=attempts or settings.GATEWAY_SDK_MAX_ATTEMPTS,
            base=settings.GATEWAY_SDK_BACKOFF_BASE,
            maximum=settings.GATEWAY_SDK_BACKOFF_MAX,
            retry_on=(httpx.HTTPError,),
            sleep=sleep,
        )
    except httpx.HTTPError as e:
        logger.error(f"Failed to load payment gateway from {url}: {str(e)}")
        raise CheckoutFailed("Failed to load payment gateway") from e
    finally:
        if owns_client:
            await client.aclose()

    logger.info(f"Payment gateway SDK available at {url}")
    return HostedCheckoutBridge(key_id=settings.RAZORPAY_KEY_ID)
