"""
Per-session service wiring and FastAPI dependencies

Each signed-in user gets one CheckoutSession holding their backend client,
cart store, gateway adapter and orchestrator. Sessions live in a registry on
``app.state`` keyed by the hashed session token.
"""
import time
from typing import Callable, Dict, Optional

from fastapi import Depends, HTTPException, Request, status

from snapfest.core.config import settings
from snapfest.core.logging_config import logger
from snapfest.services.backend_client import BackendClient
from snapfest.services.booking_api import BookingAPI
from snapfest.services.cart_api import CartAPI
from snapfest.services.cart_store import CartStore
from snapfest.services.checkout_journal import CheckoutJournal
from snapfest.services.checkout_orchestrator import CheckoutOrchestrator
from snapfest.services.gateway_adapter import RazorpayCheckoutAdapter
from snapfest.services.payment_api import PaymentAPI


class CheckoutSession:
    """Services bound to one user's session"""

    def __init__(
        self,
        cart_store: CartStore,
        booking_api: BookingAPI,
        payment_api: PaymentAPI,
        gateway: RazorpayCheckoutAdapter,
        orchestrator: CheckoutOrchestrator,
        client: Optional[BackendClient] = None,
    ):
        self.cart_store = cart_store
        self.booking_api = booking_api
        self.payment_api = payment_api
        self.gateway = gateway
        self.orchestrator = orchestrator
        self.client = client
        self.cart_loaded = False
        self.last_used = 0.0

    @property
    def busy(self) -> bool:
        return self.orchestrator.busy or self.cart_store.checkout_in_progress

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()


SessionFactory = Callable[[str, str, Optional[CheckoutJournal]], CheckoutSession]


def build_session(token: str, session_key: str, journal: Optional[CheckoutJournal]) -> CheckoutSession:
    """Wire the production services for one session"""
    client = BackendClient(token=token)
    booking_api = BookingAPI(client)
    payment_api = PaymentAPI(client)
    gateway = RazorpayCheckoutAdapter()
    orchestrator = CheckoutOrchestrator(
        booking_api, payment_api, gateway, journal=journal, session_key=session_key
    )
    return CheckoutSession(
        cart_store=CartStore(CartAPI(client)),
        booking_api=booking_api,
        payment_api=payment_api,
        gateway=gateway,
        orchestrator=orchestrator,
        client=client,
    )


class SessionRegistry:
    """
    In-memory registry of CheckoutSessions

    Sessions idle for longer than ``idle_timeout`` seconds are closed on the
    next lookup, unless a run still holds them.
    """

    def __init__(
        self,
        journal: Optional[CheckoutJournal] = None,
        factory: SessionFactory = build_session,
        idle_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.journal = journal
        self.factory = factory
        self.idle_timeout = settings.SESSION_IDLE_TIMEOUT if idle_timeout is None else idle_timeout
        self.clock = clock
        self._sessions: Dict[str, CheckoutSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def get(self, token: str, session_key: str) -> CheckoutSession:
        now = self.clock()
        await self.evict_idle(now, keep=session_key)
        session = self._sessions.get(session_key)
        if session is None:
            session = self.factory(token, session_key, self.journal)
            self._sessions[session_key] = session
            logger.debug(f"Checkout session created: {session_key[:8]}")
        session.last_used = now
        return session

    async def evict_idle(self, now: float, keep: Optional[str] = None) -> None:
        idle = [
            key for key, session in self._sessions.items()
            if key != keep and not session.busy and now - session.last_used > self.idle_timeout
        ]
        for key in idle:
            session = self._sessions.pop(key)
            await session.aclose()
            logger.debug(f"Idle checkout session closed: {key[:8]}")

    async def aclose(self) -> None:
        for session in self._sessions.values():
            await session.aclose()
        self._sessions.clear()


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


async def get_checkout_session(
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
) -> CheckoutSession:
    """Session of the calling user"""
    token = getattr(request.state, "access_token", None)
    session_key = getattr(request.state, "session_key", None)
    if not token or not session_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return await registry.get(token, session_key)


async def get_cart_store(session: CheckoutSession = Depends(get_checkout_session)) -> CartStore:
    """Cart store of the calling user, loaded from the backend on first use"""
    store = session.cart_store
    if not session.cart_loaded and not store.checkout_in_progress:
        await store.refresh()
        session.cart_loaded = True
    return store


def get_journal(registry: SessionRegistry = Depends(get_registry)) -> CheckoutJournal:
    if registry.journal is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Checkout journal is not configured"
        )
    return registry.journal
