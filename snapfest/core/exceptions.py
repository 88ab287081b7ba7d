"""
Checkout error taxonomy

Every error carries a human-readable ``message`` and a ``retryable`` flag so
the HTTP layer can offer a retry affordance without inspecting types.
"""
from typing import Any, Optional


class SnapfestError(Exception):
    """Base error for the checkout core"""

    retryable: bool = False

    def __init__(self, message: str = "", *, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or self.__class__.__name__
        if retryable is not None:
            self.retryable = retryable

    def __str__(self) -> str:
        return self.message


class EmptyCartError(SnapfestError):
    """Cart is empty"""


class ValidationError(SnapfestError):
    """User-correctable input was rejected"""


class NotFoundError(SnapfestError):
    """Requested resource does not exist"""


class BackendError(SnapfestError):
    """Backend rejected the request"""


class NetworkError(SnapfestError):
    """Transient transport failure, safe to retry"""

    retryable = True


class OrderCreationError(SnapfestError):
    """Payment order could not be created"""

    retryable = True


class CheckoutCancelled(SnapfestError):
    """Payment cancelled by user"""


class CheckoutFailed(SnapfestError):
    """Gateway checkout failed"""

    retryable = True


class VerificationFailed(SnapfestError):
    """Payment verification failed"""


class CheckoutInProgressError(SnapfestError):
    """A checkout is already in progress for this cart"""


class CheckoutError(SnapfestError):
    """
    Aborted checkout run.

    Names the failing item (1-based), the step that failed and the
    underlying cause, and carries the progress record of the run so the
    caller can show how many bookings were created and paid.
    """

    def __init__(
        self,
        *,
        item_index: int,
        total_items: int,
        step: str,
        cause: SnapfestError,
        progress: Any = None,
    ):
        self.item_index = item_index
        self.total_items = total_items
        self.step = step
        self.cause = cause
        self.progress = progress
        super().__init__(
            f"{step} failed for item {item_index} of {total_items}: {cause.message}",
            retryable=cause.retryable,
        )

    @property
    def cancelled(self) -> bool:
        return isinstance(self.cause, CheckoutCancelled)

    @property
    def silent(self) -> bool:
        """Cancellation is user-initiated and never surfaced as an error"""
        return self.cancelled
