import enum


class TransferError(Exception):
    """
    Base class for every error the settlement engine surfaces to its caller.

    `user_message` is a short, actionable description suitable for showing to an end user.
    The underlying collaborator error (if any) is available as `__cause__`.
    """

    default_user_message = "Token transfer failed"

    @property
    def user_message(self) -> str:
        return str(self) or self.default_user_message


class ConfigUnavailable(TransferError):
    default_user_message = "Token configuration could not be fetched"


class IndexUnavailable(TransferError):
    default_user_message = "Token balances could not be fetched"


class InvalidRequest(TransferError, ValueError):
    pass


class InsufficientFunds(TransferError):
    default_user_message = "Insufficient token balance"

    def __init__(self, message: str = "", *, required: int | None = None, available: int | None = None):
        super().__init__(message)
        self.required = required
        self.available = available

    @property
    def user_message(self) -> str:
        return self.default_user_message


class FeeScheduleGap(TransferError):
    default_user_message = "Fee ranges inadequate"

    def __init__(self, message: str = "", *, amount: int | None = None):
        super().__init__(message)
        self.amount = amount

    @property
    def user_message(self) -> str:
        return self.default_user_message


class AncestorNotFound(TransferError):
    default_user_message = "Source transaction not found"

    def __init__(self, message: str = "", *, txid: str | None = None):
        super().__init__(message)
        self.txid = txid


class AncestorFetchFailed(TransferError):
    default_user_message = "Failed to fetch source transaction"

    def __init__(self, message: str = "", *, txid: str | None = None):
        super().__init__(message)
        self.txid = txid


class SigningFailed(TransferError):
    default_user_message = "Failed to sign transaction"


class CosignRejectionReason(enum.Enum):
    FROZEN = "frozen"
    DENYLISTED = "denylisted"
    BLOCKED = "blocked"
    PAUSED = "paused"
    REJECTED = "rejected"


COSIGN_REJECTION_MESSAGES = {
    CosignRejectionReason.FROZEN: "Your address is currently frozen and cannot send tokens",
    CosignRejectionReason.DENYLISTED: "The recipient address is blacklisted and cannot receive tokens",
    CosignRejectionReason.BLOCKED: "Transaction blocked: Address is either frozen or blacklisted",
    CosignRejectionReason.PAUSED: "Token transfers are currently paused by the administrator",
}


class CosignRejected(TransferError):
    def __init__(
        self,
        message: str = "",
        *,
        reason: CosignRejectionReason = CosignRejectionReason.REJECTED,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code

    @property
    def user_message(self) -> str:
        try:
            return COSIGN_REJECTION_MESSAGES[self.reason]
        except KeyError:
            return str(self) or "Transaction rejected by the cosigner"


class CosignUnavailable(TransferError):
    default_user_message = "Service temporarily unavailable"

    @property
    def user_message(self) -> str:
        return self.default_user_message


class BroadcastFailed(TransferError):
    default_user_message = "Failed to broadcast transaction"


class StatusUnavailable(TransferError):
    default_user_message = "Transaction status could not be fetched"


class SettlementTimeout(TransferError):
    default_user_message = "Transaction status polling timed out"

    def __init__(self, message: str = "", *, ticket_id: str, attempts: int):
        super().__init__(message)
        self.ticket_id = ticket_id
        self.attempts = attempts


class SettlementCancelled(TransferError):
    default_user_message = "Transaction status polling was cancelled"

    def __init__(self, message: str = "", *, ticket_id: str):
        super().__init__(message)
        self.ticket_id = ticket_id
