"""
Error taxonomy shared by every ledger in the engine.

Callers (an HTTP layer, admin actions, management commands) can catch
``FreightError`` to handle all engine failures, or one of the subclasses to
map them to a specific response.
"""

from typing import Iterable, List


class FreightError(Exception):
    """Base exception for freight engine errors"""
    pass


class ValidationError(FreightError):
    """Raised when input has the wrong shape or is out of range"""
    pass


class ConflictError(FreightError):
    """Raised when the stored state changed under the caller; re-fetch and retry"""
    pass


class DuplicateTrackingNumber(ConflictError):
    def __init__(self, tracking_number: str):
        self.tracking_number = tracking_number
        super().__init__(f"Tracking number {tracking_number} is already registered")


class PackageUnavailable(ConflictError):
    """Raised when selected packages cannot be claimed for a shipment"""

    def __init__(self, package_ids: Iterable[int], reason: str = "not ARRIVED, not owned by you, or already in another shipment"):
        self.package_ids: List[int] = sorted(package_ids)
        self.reason = reason
        ids = ", ".join(str(pk) for pk in self.package_ids)
        super().__init__(f"Packages unavailable ({reason}): {ids}")


class AlreadyReviewed(ConflictError):
    def __init__(self, transaction_id: int, status: str):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(f"Transaction {transaction_id} was already reviewed (status {status})")


class InsufficientBalance(ConflictError):
    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        super().__init__(f"Wallet balance {balance} does not cover {required}")


class InvalidStateError(FreightError):
    """Raised when an operation is not legal in the entity's current lifecycle state"""
    pass


class NotFoundError(FreightError):
    """Raised when the referenced entity does not exist or is not visible to the caller"""
    pass


class ExternalCollaboratorError(FreightError):
    """Raised by invoice providers and notification sinks"""
    pass
