"""
Checkout orchestrator

Drives a cart checkout item by item through
create booking -> create order -> gateway -> verify, stopping at the first
failure. Bookings already created are never rolled back; they remain pending
payment and are journalled as orphaned. A session runs one checkout or
pay-remaining at a time.

Run states, logged on every transition:

    STARTED -> CART_VALIDATED -> (BOOKING_CREATED -> ORDER_CREATED
        -> GATEWAY_RESOLVED -> VERIFIED) per item -> COMPLETED
    any per-item step -> CANCELLED | FAILED
"""
import asyncio
import uuid
from contextlib import AsyncExitStack
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from snapfest.core.config import settings
from snapfest.core.exceptions import (
    CheckoutError,
    CheckoutInProgressError,
    EmptyCartError,
    OrderCreationError,
    SnapfestError,
    ValidationError,
)
from snapfest.core.logging_config import logger
from snapfest.db.models import RunItemStatus, RunKind, RunStatus
from snapfest.schemas.booking import Booking
from snapfest.schemas.cart import CartItem
from snapfest.schemas.checkout import (
    CheckoutOutcome,
    CheckoutProgress,
    CheckoutState,
    CheckoutStep,
    ConfirmedBooking,
)
from snapfest.schemas.payment import GatewayResult, PayerInfo, PaymentOrder, PaymentSummary
from snapfest.services.booking_api import BookingAPI
from snapfest.services.cart_store import CartStore, CheckoutLease
from snapfest.services.checkout_journal import CheckoutJournal
from snapfest.services.gateway_adapter import RazorpayCheckoutAdapter
from snapfest.services.payment_api import PaymentAPI
from snapfest.services.payment_state import ensure_monotonic, summarize
from snapfest.utils.money import percentage_of

FINISHED_STATES = (CheckoutState.COMPLETED, CheckoutState.CANCELLED, CheckoutState.FAILED)


class CheckoutOrchestrator:
    """Sequential checkout of a cart, one gateway session per item"""

    def __init__(
        self,
        booking_api: BookingAPI,
        payment_api: PaymentAPI,
        gateway: RazorpayCheckoutAdapter,
        journal: Optional[CheckoutJournal] = None,
        session_key: Optional[str] = None,
    ):
        self.booking_api = booking_api
        self.payment_api = payment_api
        self.gateway = gateway
        self.journal = journal
        self.session_key = session_key
        self.merchant_name = settings.MERCHANT_NAME
        self.run_history = settings.CHECKOUT_RUN_HISTORY
        self._runs: Dict[str, CheckoutProgress] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._cleanup: Set[asyncio.Task] = set()
        self._busy = False

    @property
    def busy(self) -> bool:
        """True while a checkout or pay-remaining run owns this session"""
        return self._busy

    def progress(self, run_id: str) -> Optional[CheckoutProgress]:
        """Snapshot of a run's progress, or None for an unknown run"""
        progress = self._runs.get(run_id)
        return progress.model_copy(deep=True) if progress else None

    async def execute(
        self,
        cart_store: CartStore,
        payment_percentage: int,
        payer: Optional[PayerInfo] = None,
    ) -> CheckoutOutcome:
        """
        Check out the whole cart and wait for the result

        Args:
            cart_store: Cart to check out; locked for the duration of the run
            payment_percentage: Advance collected per booking (20-100)
            payer: Gateway prefill details

        Returns:
            CheckoutOutcome with one ConfirmedBooking per cart item

        Raises:
            ValidationError: Percentage out of range
            EmptyCartError: Nothing to check out
            CheckoutInProgressError: Another run holds this session or the cart
            CheckoutError: A step failed; carries item, step, cause and progress
        """
        async with AsyncExitStack() as stack:
            progress, items, lease = await self._begin(cart_store, payment_percentage, stack)
            return await self._run(progress, items, lease, payment_percentage, payer or PayerInfo())

    async def start(
        self,
        cart_store: CartStore,
        payment_percentage: int,
        payer: Optional[PayerInfo] = None,
    ) -> CheckoutProgress:
        """
        Validate and lock the cart, then run the checkout in the background

        Validation and lock errors are raised here; failures of the run
        itself are reported through ``progress(run_id)``.
        """
        stack = AsyncExitStack()
        try:
            progress, items, lease = await self._begin(cart_store, payment_percentage, stack)
        except BaseException:
            await stack.aclose()
            raise

        self._spawn(progress, stack, lambda: self._run(
            progress, items, lease, payment_percentage, payer or PayerInfo()
        ))
        return progress.model_copy(deep=True)

    async def pay_remaining(
        self,
        booking_id: str,
        payer: Optional[PayerInfo] = None,
    ) -> ConfirmedBooking:
        """
        Settle the remaining balance of a partially paid booking

        Raises:
            NotFoundError: Unknown booking
            ValidationError: Nothing left to pay
            CheckoutInProgressError: Another run holds this session
            CheckoutError: Order, gateway or verification failed
        """
        async with AsyncExitStack() as stack:
            progress, booking, before = await self._begin_remaining(booking_id, stack)
            return await self._settle_remaining(progress, booking, before, payer)

    async def start_pay_remaining(
        self,
        booking_id: str,
        payer: Optional[PayerInfo] = None,
    ) -> CheckoutProgress:
        """Validate the balance, then settle it in the background"""
        stack = AsyncExitStack()
        try:
            progress, booking, before = await self._begin_remaining(booking_id, stack)
        except BaseException:
            await stack.aclose()
            raise

        self._spawn(progress, stack, lambda: self._settle_remaining(progress, booking, before, payer))
        return progress.model_copy(deep=True)

    async def _begin_remaining(
        self,
        booking_id: str,
        stack: AsyncExitStack,
    ) -> Tuple[CheckoutProgress, Booking, PaymentSummary]:
        self._claim(stack)
        booking = await self.booking_api.get_booking(booking_id)
        payments = await self.booking_api.list_payments(booking_id)
        before = summarize(booking, payments or None)
        if before.remaining_amount == 0:
            raise ValidationError(f"Booking {booking_id} has no remaining balance")

        progress = self._new_run(total_items=1)
        progress.settling_booking = booking.id
        if self.journal:
            self.journal.start_run(progress, kind=RunKind.PAY_REMAINING, session_key=self.session_key)
        self._transition(progress, CheckoutState.CART_VALIDATED)
        progress.current_item = 1
        return progress, booking, before

    async def _settle_remaining(
        self,
        progress: CheckoutProgress,
        booking: Booking,
        before: PaymentSummary,
        payer: Optional[PayerInfo],
    ) -> ConfirmedBooking:
        booking_id = booking.id
        step = CheckoutStep.CREATE_ORDER
        try:
            order = await self.payment_api.create_full_order(booking_id)
            if order.amount != before.remaining_amount:
                raise OrderCreationError(
                    f"Order amount {order.amount} does not match remaining balance "
                    f"{before.remaining_amount} for booking {booking_id}"
                )
            self._transition(progress, CheckoutState.ORDER_CREATED, booking_id)
            self._record(progress, 1, RunItemStatus.ORDER_CREATED, booking_id=booking_id,
                         order_id=order.id, amount=order.amount)

            step = CheckoutStep.GATEWAY
            result = await self._open_gateway(order, f"Remaining payment for booking {booking_id}", payer)
            self._transition(progress, CheckoutState.GATEWAY_RESOLVED, booking_id)

            step = CheckoutStep.VERIFY
            confirmed = await self._verify(booking, order, result)
        except SnapfestError as e:
            raise self._abort(progress, 1, step, e)

        summary = confirmed.summary
        status = ensure_monotonic(before.payment_status, summary.payment_status)
        if status != summary.payment_status:
            confirmed = confirmed.model_copy(
                update={"summary": summary.model_copy(update={"payment_status": status})}
            )

        progress.bookings_paid.append(booking.id)
        self._record(progress, 1, RunItemStatus.PAID, payment_id=result.gateway_payment_id)
        self._transition(progress, CheckoutState.VERIFIED, booking_id)
        self._complete(progress)
        return confirmed

    async def _begin(
        self,
        cart_store: CartStore,
        payment_percentage: int,
        stack: AsyncExitStack,
    ) -> Tuple[CheckoutProgress, Sequence[CartItem], CheckoutLease]:
        if not (settings.MIN_PAYMENT_PERCENTAGE <= payment_percentage <= settings.MAX_PAYMENT_PERCENTAGE):
            raise ValidationError(
                f"Payment percentage must be between {settings.MIN_PAYMENT_PERCENTAGE} "
                f"and {settings.MAX_PAYMENT_PERCENTAGE}"
            )
        self._claim(stack)
        lease = await stack.enter_async_context(cart_store.checkout_lock())
        # Book exactly what the server holds now, not the cached view
        items = await lease.reload()
        if not items:
            raise EmptyCartError("Your cart is empty")

        progress = self._new_run(total_items=len(items))
        if self.journal:
            self.journal.start_run(
                progress,
                kind=RunKind.CART_CHECKOUT,
                payment_percentage=payment_percentage,
                session_key=self.session_key,
            )
        self._transition(progress, CheckoutState.CART_VALIDATED)
        return progress, items, lease

    async def _run(
        self,
        progress: CheckoutProgress,
        items: Sequence[CartItem],
        lease: CheckoutLease,
        payment_percentage: int,
        payer: PayerInfo,
    ) -> CheckoutOutcome:
        confirmed: List[ConfirmedBooking] = []

        for index, item in enumerate(items, start=1):
            progress.current_item = index
            step = CheckoutStep.CREATE_BOOKING
            try:
                booking = await self.booking_api.create_booking(
                    package_id=item.package_id,
                    event_date=item.event_date,
                    location=item.location,
                    guests=item.guests,
                    customization=item.customization,
                    payment_percentage=payment_percentage,
                )
                progress.bookings_created.append(booking.id)
                self._check_advance(booking)
                self._transition(progress, CheckoutState.BOOKING_CREATED, booking.id)
                self._record(progress, index, RunItemStatus.BOOKING_CREATED,
                             cart_item_id=item.id, booking_id=booking.id)

                step = CheckoutStep.CREATE_ORDER
                order = await self.payment_api.create_partial_order(booking.id, booking.partial_amount)
                self._transition(progress, CheckoutState.ORDER_CREATED, booking.id)
                self._record(progress, index, RunItemStatus.ORDER_CREATED,
                             order_id=order.id, amount=order.amount)

                step = CheckoutStep.GATEWAY
                title = item.package_title or item.package_id
                result = await self._open_gateway(order, f"Booking for {title}", payer)
                self._transition(progress, CheckoutState.GATEWAY_RESOLVED, booking.id)
                self._record(progress, index, RunItemStatus.GATEWAY_RESOLVED,
                             payment_id=result.gateway_payment_id)

                step = CheckoutStep.VERIFY
                confirmed.append(await self._verify(booking, order, result))
            except SnapfestError as e:
                raise self._abort(progress, index, step, e)

            progress.bookings_paid.append(booking.id)
            self._record(progress, index, RunItemStatus.PAID)
            self._transition(progress, CheckoutState.VERIFIED, booking.id)

        try:
            await lease.remove_checked_out(item.id for item in items)
        except SnapfestError as e:
            # Every booking is paid; a stale cart is recoverable by refresh
            logger.error(f"Checkout run {progress.run_id} could not clear the cart: {e.message}")

        self._complete(progress)
        return CheckoutOutcome(confirmed=confirmed, progress=progress.model_copy(deep=True))

    async def _open_gateway(self, order: PaymentOrder, description: str, payer: Optional[PayerInfo]) -> GatewayResult:
        return await self.gateway.open_checkout(
            order_id=order.id,
            amount=order.amount,
            currency=order.currency,
            merchant_name=self.merchant_name,
            description=description,
            payer=payer or PayerInfo(),
        )

    async def _verify(self, booking: Booking, order: PaymentOrder, result: GatewayResult) -> ConfirmedBooking:
        verification = await self.payment_api.verify_payment(
            booking_id=booking.id,
            payment_id=result.gateway_payment_id,
            order_id=result.gateway_order_id,
            signature=result.gateway_signature,
        )
        return ConfirmedBooking(
            booking=verification.booking,
            order=order,
            gateway=result,
            summary=summarize(verification.booking),
        )

    def _check_advance(self, booking: Booking) -> None:
        expected = percentage_of(booking.total_amount, booking.payment_percentage)
        if booking.partial_amount != expected:
            logger.warning(
                f"Booking {booking.id} advance {booking.partial_amount} differs from "
                f"{booking.payment_percentage}% of {booking.total_amount} ({expected})"
            )

    def _claim(self, stack: AsyncExitStack) -> None:
        if self._busy:
            raise CheckoutInProgressError("Another checkout is in progress for this session")
        self._busy = True
        stack.callback(self._release)

    def _release(self) -> None:
        self._busy = False

    def _spawn(
        self,
        progress: CheckoutProgress,
        stack: AsyncExitStack,
        work: Callable[[], Awaitable],
    ) -> None:
        async def run():
            async with stack:
                return await work()

        task = asyncio.create_task(run())
        self._tasks[progress.run_id] = task
        task.add_done_callback(lambda done: self._on_task_done(progress, stack, done))

    def _new_run(self, total_items: int) -> CheckoutProgress:
        progress = CheckoutProgress(run_id=uuid.uuid4().hex, total_items=total_items)
        self._runs[progress.run_id] = progress
        self._prune_runs()
        logger.info(f"Checkout run {progress.run_id} started: {total_items} item(s)")
        return progress

    def _prune_runs(self) -> None:
        """Forget the oldest finished runs beyond ``run_history``; the journal keeps them"""
        excess = len(self._runs) - self.run_history
        if excess <= 0:
            return
        finished = [run_id for run_id, p in self._runs.items() if p.state in FINISHED_STATES]
        for run_id in finished[:excess]:
            del self._runs[run_id]

    def _transition(self, progress: CheckoutProgress, state: CheckoutState, booking_id: Optional[str] = None) -> None:
        progress.state = state
        where = f" item {progress.current_item}/{progress.total_items}" if progress.current_item else ""
        suffix = f" booking {booking_id}" if booking_id else ""
        logger.info(f"Checkout run {progress.run_id}{where}: {state.value}{suffix}")

    def _record(self, progress: CheckoutProgress, index: int, status: RunItemStatus, **fields) -> None:
        if self.journal:
            self.journal.record_item(progress.run_id, index, status, **fields)

    def _complete(self, progress: CheckoutProgress) -> None:
        self._transition(progress, CheckoutState.COMPLETED)
        if self.journal:
            self.journal.finish_run(progress, RunStatus.COMPLETED)

    def _abort(
        self,
        progress: CheckoutProgress,
        index: int,
        step: CheckoutStep,
        cause: SnapfestError,
    ) -> CheckoutError:
        error = CheckoutError(
            item_index=index,
            total_items=progress.total_items,
            step=step.value,
            cause=cause,
        )
        progress.error = error.message
        progress.retryable = error.retryable
        if error.cancelled:
            self._transition(progress, CheckoutState.CANCELLED)
            status = RunStatus.CANCELLED
        else:
            self._transition(progress, CheckoutState.FAILED)
            logger.error(f"Checkout run {progress.run_id} failed: {error.message}")
            status = RunStatus.FAILED
        if self.journal:
            self.journal.finish_run(progress, status, failed_step=step.value)
        error.progress = progress.model_copy(deep=True)
        return error

    def _on_task_done(self, progress: CheckoutProgress, stack: AsyncExitStack, task: asyncio.Task) -> None:
        self._tasks.pop(progress.run_id, None)
        if task.cancelled():
            # A task cancelled before its first step never entered the stack
            cleanup = asyncio.get_running_loop().create_task(stack.aclose())
            self._cleanup.add(cleanup)
            cleanup.add_done_callback(self._cleanup.discard)
            progress.state = CheckoutState.FAILED
            progress.error = "Checkout run was cancelled"
        else:
            error = task.exception()
            if error is None or isinstance(error, CheckoutError):
                return
            progress.state = CheckoutState.FAILED
            progress.error = str(error)
            logger.error(f"Checkout run {progress.run_id} crashed: {error!r}", exc_info=error)
        if self.journal:
            self.journal.finish_run(progress, RunStatus.FAILED)
