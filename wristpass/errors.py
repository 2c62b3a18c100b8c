"""Error taxonomy for the purchase, provisioning and mass-status flows.

Every error carries the HTTP status it is answered with; the handlers in
`server.py` turn them into `{"error": message}` bodies.
"""
from __future__ import annotations


class WristpassError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def body(self) -> dict:
        return {"error": self.message}


# ---- validation / auth
class ValidationFailedError(WristpassError):
    status_code = 400


class AuthenticationError(WristpassError):
    status_code = 401


class ForbiddenError(WristpassError):
    status_code = 403


class NotFoundError(WristpassError):
    status_code = 404


class ConflictError(WristpassError):
    status_code = 409


# ---- conflicts
class InsufficientInventoryError(ConflictError):
    def __init__(self, ticket_type_id: str) -> None:
        self.ticket_type_id = ticket_type_id
        super().__init__(
            f"Not enough tickets available for type {ticket_type_id}."
        )


class DuplicateCodeError(ConflictError):
    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(
            f"Base code '{code}' is already in use. Try a different code."
        )


class SoldUnitsBlockWithdrawalError(ForbiddenError):
    def __init__(self) -> None:
        super().__init__(
            "Cannot deactivate: at least one wristband of this event has "
            "already been sold or is reserved by an open purchase."
        )


class LedgerAlreadyFinalizedError(ConflictError):
    def __init__(self, transaction_id: str, status: str) -> None:
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(
            f"Transaction {transaction_id} is already {status}."
        )


class TransactionNotFoundError(NotFoundError):
    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__("Transaction not found.")


class PaymentNotConfiguredError(ForbiddenError):
    def __init__(self) -> None:
        super().__init__(
            "Payment gateway keys are not configured by the manager."
        )


# ---- payment outcomes
class PaymentFailedError(WristpassError):
    """Definitive decline; an expected outcome, no operator alert."""
    status_code = 402

    def __init__(self, transaction_id: str,
                 message: str = "Payment was declined.") -> None:
        self.transaction_id = transaction_id
        super().__init__(message)

    def body(self) -> dict:
        return {"error": self.message, "status": "failed"}


class AssignmentFailedError(WristpassError):
    """Funds were captured but the units could not be assigned."""
    status_code = 500

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(
            "Payment captured but ticket assignment failed; requires manual "
            f"reconciliation. Reference: {transaction_id}"
        )


class ProvisioningError(WristpassError):
    status_code = 500

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(
            f"Failed to create inventory units for '{code}'; "
            "the wristband was rolled back."
        )
