# fixifly/exceptions.py

from decimal import Decimal

from rest_framework import status


class WalletError(Exception):
    """Base class for domain errors the API turns into a coded response."""

    code = 'WALLET_ERROR'
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = '', **extra):
        super().__init__(message or self.default_message())
        self.message = message or self.default_message()
        self.extra = extra

    def default_message(self) -> str:
        return 'Wallet operation failed.'

    def as_response_data(self) -> dict:
        data = {'detail': self.message, 'error': self.code}
        for key, value in self.extra.items():
            data[key] = str(value) if isinstance(value, Decimal) else value
        return data


class InsufficientFundsError(WalletError):
    code = 'INSUFFICIENT_WALLET_BALANCE'

    def __init__(self, current_balance: Decimal, required_amount: Decimal, message: str = ''):
        self.current_balance = current_balance
        self.required_amount = required_amount
        super().__init__(
            message,
            current_balance=current_balance,
            required_amount=required_amount,
        )

    def default_message(self) -> str:
        return 'Insufficient wallet balance.'


class MandatoryDepositRequiredError(WalletError):
    code = 'MANDATORY_DEPOSIT_REQUIRED'
    http_status = status.HTTP_403_FORBIDDEN

    def __init__(self, required_amount: Decimal, message: str = ''):
        self.required_amount = required_amount
        super().__init__(message, required_amount=required_amount)

    def default_message(self) -> str:
        return 'A mandatory security deposit is required before accepting new tasks.'


class AlreadyResolvedError(WalletError):
    code = 'ALREADY_RESOLVED'
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, current_status: str, message: str = ''):
        self.current_status = current_status
        super().__init__(message, current_status=current_status)

    def default_message(self) -> str:
        return 'This request has already been resolved.'


class DuplicateTransactionError(WalletError):
    """A posting of this type already exists for the reference id."""

    code = 'DUPLICATE_TRANSACTION'
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, existing, message: str = ''):
        self.existing = existing
        super().__init__(message, transaction_id=existing.transaction_id)

    def default_message(self) -> str:
        return 'This transaction has already been posted.'


class CashCollectionMismatchError(WalletError):
    """The task was already reconciled against a different cash total."""

    code = 'CASH_COLLECTION_MISMATCH'
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, existing, total_collectible: Decimal, message: str = ''):
        self.existing = existing
        super().__init__(
            message,
            transaction_id=existing.transaction_id,
            reconciled_total=existing.metadata.get('total_collectible'),
            total_collectible=total_collectible,
        )

    def default_message(self) -> str:
        return 'This task was already reconciled for a different cash amount.'


class InvalidTransitionError(WalletError):
    code = 'INVALID_TRANSITION'
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, current_state: str, message: str = ''):
        self.current_state = current_state
        super().__init__(message, current_state=current_state)

    def default_message(self) -> str:
        return 'This action is not allowed in the current task state.'


class PendingWithdrawalExistsError(WalletError):
    code = 'WITHDRAWAL_ALREADY_PENDING'
    http_status = status.HTTP_409_CONFLICT

    def default_message(self) -> str:
        return 'You already have a pending withdrawal request.'
