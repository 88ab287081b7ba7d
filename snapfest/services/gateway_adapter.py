"""
Razorpay checkout adapter

Turns the callback-driven checkout widget into a single awaitable:
``open_checkout`` resolves with the gateway's payment tuple, or raises
CheckoutCancelled when the user closes the modal and CheckoutFailed for
everything else. Amounts are whole currency units on the way in; the
conversion to paise happens in ``_to_minor_units`` and nowhere else.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from snapfest.core.config import settings
from snapfest.core.exceptions import CheckoutCancelled, CheckoutFailed
from snapfest.core.logging_config import logger
from snapfest.schemas.payment import GatewayResult, PayerInfo
from snapfest.services.gateway_bridge import HostedCheckoutBridge, load_checkout_sdk

SDKLoader = Callable[[], Awaitable[HostedCheckoutBridge]]

NOTES_SOURCE = "snapfest_web"


def _to_minor_units(amount: int) -> int:
    """Whole rupees to paise"""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise CheckoutFailed(f"Checkout amount must be whole currency units, got {amount!r}")
    if amount <= 0:
        raise CheckoutFailed(f"Checkout amount must be positive, got {amount}")
    return amount * 100


class RazorpayCheckoutAdapter:
    """Gateway adapter holding at most one open checkout session"""

    def __init__(
        self,
        loader: Optional[SDKLoader] = None,
        key_id: Optional[str] = None,
        session_timeout: Optional[float] = None,
        theme_color: Optional[str] = None,
    ):
        self._loader = loader or load_checkout_sdk
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.session_timeout = (
            settings.GATEWAY_SESSION_TIMEOUT if session_timeout is None else session_timeout
        )
        self.theme_color = theme_color or settings.THEME_COLOR
        self._sdk: Optional[HostedCheckoutBridge] = None
        self._load_lock = asyncio.Lock()
        self._active_order: Optional[str] = None

    @property
    def sdk(self) -> Optional[HostedCheckoutBridge]:
        """Loaded checkout bridge, or None before the first checkout"""
        return self._sdk

    @property
    def active_order(self) -> Optional[str]:
        return self._active_order

    async def ensure_loaded(self) -> HostedCheckoutBridge:
        """
        Load the checkout SDK once; concurrent callers share the same load

        A failed load is not remembered, so the next call tries again.
        """
        if self._sdk is not None:
            return self._sdk
        async with self._load_lock:
            if self._sdk is None:
                logger.info("Loading payment gateway SDK")
                self._sdk = await self._loader()
        return self._sdk

    async def open_checkout(
        self,
        order_id: str,
        amount: int,
        currency: str,
        merchant_name: str,
        description: str,
        payer: Optional[PayerInfo] = None,
    ) -> GatewayResult:
        """
        Open the checkout modal for one order and wait for its outcome

        Raises:
            CheckoutCancelled: User dismissed the modal
            CheckoutFailed: SDK unavailable, payment failed, session timed
                out, or another session is already open
        """
        if self._active_order is not None:
            raise CheckoutFailed("another checkout session is active")
        self._active_order = order_id

        checkout = None
        try:
            sdk = await self.ensure_loaded()
            future: asyncio.Future = asyncio.get_running_loop().create_future()
            options = self._build_options(
                future, order_id, amount, currency, merchant_name, description, payer or PayerInfo()
            )
            checkout = sdk.checkout(options)
            checkout.on("payment.failed", lambda response: self._reject(future, response))
            checkout.open()
            logger.info(f"Checkout opened for order {order_id}: {amount} {currency}")

            try:
                result = await asyncio.wait_for(future, timeout=self.session_timeout or None)
            except asyncio.TimeoutError:
                logger.warning(f"Checkout session for order {order_id} timed out")
                raise CheckoutFailed("Checkout session timed out")

            logger.info(
                f"Checkout resolved for order {order_id}: payment {result.gateway_payment_id}"
            )
            return result
        except CheckoutCancelled:
            logger.info(f"Checkout cancelled for order {order_id}")
            raise
        finally:
            if checkout is not None:
                checkout.close()
            self._active_order = None

    def _build_options(
        self,
        future: asyncio.Future,
        order_id: str,
        amount: int,
        currency: str,
        merchant_name: str,
        description: str,
        payer: PayerInfo,
    ) -> Dict[str, Any]:
        def handler(response: Dict[str, str]) -> None:
            if future.done():
                return
            try:
                future.set_result(GatewayResult(
                    gateway_payment_id=response["razorpay_payment_id"],
                    gateway_order_id=response["razorpay_order_id"],
                    gateway_signature=response["razorpay_signature"],
                ))
            except KeyError as e:
                future.set_exception(CheckoutFailed(f"Incomplete gateway response: missing {e}"))

        def ondismiss() -> None:
            if not future.done():
                future.set_exception(CheckoutCancelled())

        return {
            "key": self.key_id,
            "amount": _to_minor_units(amount),
            "currency": currency,
            "name": merchant_name,
            "description": description,
            "order_id": order_id,
            "prefill": payer.model_dump(),
            "notes": {"source": NOTES_SOURCE},
            "theme": {"color": self.theme_color},
            "handler": handler,
            "modal": {"ondismiss": ondismiss},
        }

    @staticmethod
    def _reject(future: asyncio.Future, response: Dict[str, Any]) -> None:
        if future.done():
            return
        reason = (response.get("error") or {}).get("description") or "Payment failed"
        future.set_exception(CheckoutFailed(reason))
