"""
Checkout journal service

Persists every checkout run and the last step each item reached. Bookings are
never rolled back when a run aborts; the journal marks them ORPHANED so they
can be inspected and settled later.
"""
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from snapfest.core.logging_config import logger
from snapfest.db.models import CheckoutRun, CheckoutRunItem, RunItemStatus, RunKind, RunStatus
from snapfest.db.session import SessionLocal
from snapfest.schemas.checkout import CheckoutProgress, OrphanedBooking


class CheckoutJournal:
    """Journal of checkout runs backed by SQLAlchemy"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def start_run(
        self,
        progress: CheckoutProgress,
        kind: RunKind = RunKind.CART_CHECKOUT,
        payment_percentage: Optional[int] = None,
        session_key: Optional[str] = None,
    ) -> None:
        def write(db: Session) -> None:
            db.add(CheckoutRun(
                id=progress.run_id,
                kind=kind,
                session_key=session_key,
                total_items=progress.total_items,
                payment_percentage=payment_percentage,
                status=RunStatus.RUNNING,
                state=progress.state.value,
            ))

        self._write("start run", write)

    def record_item(
        self,
        run_id: str,
        item_index: int,
        status: RunItemStatus,
        *,
        cart_item_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        order_id: Optional[str] = None,
        payment_id: Optional[str] = None,
        amount: Optional[int] = None,
    ) -> None:
        """Create or advance the journal row of one item"""
        def write(db: Session) -> None:
            row = db.query(CheckoutRunItem).filter(
                CheckoutRunItem.run_id == run_id,
                CheckoutRunItem.item_index == item_index,
            ).first()
            if row is None:
                row = CheckoutRunItem(run_id=run_id, item_index=item_index, status=status)
                db.add(row)
            row.status = status
            if cart_item_id is not None:
                row.cart_item_id = cart_item_id
            if booking_id is not None:
                row.booking_id = booking_id
            if order_id is not None:
                row.order_id = order_id
            if payment_id is not None:
                row.payment_id = payment_id
            if amount is not None:
                row.amount = amount

        self._write("record item", write)

    def finish_run(
        self,
        progress: CheckoutProgress,
        status: RunStatus,
        failed_step: Optional[str] = None,
    ) -> None:
        """
        Close a run

        On an aborted cart checkout every item that has a booking but no
        verified payment becomes ORPHANED.
        """
        def write(db: Session) -> None:
            run = db.query(CheckoutRun).filter(CheckoutRun.id == progress.run_id).first()
            if run is None:
                logger.warning(f"Checkout run {progress.run_id} missing from journal")
                return
            run.status = status
            run.state = progress.state.value
            run.error = progress.error
            if status in (RunStatus.FAILED, RunStatus.CANCELLED):
                run.failed_item = progress.current_item
                run.failed_step = failed_step
                for item in run.items:
                    if item.status == RunItemStatus.PAID:
                        continue
                    if run.kind == RunKind.CART_CHECKOUT and item.booking_id:
                        item.status = RunItemStatus.ORPHANED
                    else:
                        item.status = RunItemStatus.FAILED

        self._write("finish run", write)
        orphans = progress.orphaned_bookings
        if orphans and status != RunStatus.COMPLETED:
            logger.warning(
                f"Checkout run {progress.run_id} left {len(orphans)} unpaid booking(s): "
                f"{', '.join(orphans)}"
            )

    def list_orphans(self, session_key: Optional[str] = None, limit: int = 100) -> List[OrphanedBooking]:
        """Unpaid bookings left behind by aborted runs, newest first"""
        db = self.session_factory()
        try:
            query = db.query(CheckoutRunItem, CheckoutRun).join(
                CheckoutRun, CheckoutRunItem.run_id == CheckoutRun.id
            ).filter(CheckoutRunItem.status == RunItemStatus.ORPHANED)
            if session_key is not None:
                query = query.filter(CheckoutRun.session_key == session_key)
            rows = query.order_by(
                CheckoutRunItem.created_at.desc(), CheckoutRunItem.id.desc()
            ).limit(limit).all()
            return [
                OrphanedBooking(
                    run_id=run.id,
                    item_index=item.item_index,
                    booking_id=item.booking_id,
                    order_id=item.order_id,
                    amount=item.amount,
                    failed_step=run.failed_step,
                    error=run.error,
                    created_at=item.created_at,
                )
                for item, run in rows
            ]
        finally:
            db.close()

    def _write(self, action: str, write: Callable[[Session], None]) -> None:
        db = self.session_factory()
        try:
            write(db)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            # Don't fail the checkout if the journal is unavailable
            logger.error(f"Checkout journal failed to {action}: {str(e)}", exc_info=True)
        finally:
            db.close()
