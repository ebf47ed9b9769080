"""
Errors raised by the WinZO store services.

Business-rule violations get their own type so callers (the HTTP layer, a
UI) can tell them apart without parsing messages.
"""


class WinzoError(Exception):
    """Base class for every error raised by the store"""


class InvalidCredentials(WinzoError):
    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)


class InvalidToken(WinzoError):
    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class NotFound(WinzoError):
    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class DuplicateEmail(WinzoError):
    def __init__(self, email: str):
        self.email = email
        super().__init__("Email already exists")


class InsufficientCoins(WinzoError):
    def __init__(self, required: int, available: int, message: str = None):
        self.required = required
        self.available = available
        super().__init__(
            message or f"You need {required} coins to place a bid. You have {available} coins."
        )


class AuctionEnded(WinzoError):
    def __init__(self, auction_id: int):
        self.auction_id = auction_id
        super().__init__(f"Auction {auction_id} has ended")


class InvalidBid(WinzoError):
    def __init__(self, message: str = "Please enter a valid bid amount."):
        super().__init__(message)


class TransactionAlreadyProcessed(WinzoError):
    def __init__(self, transaction_id: str, status: str):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(f"Transaction {transaction_id} is already {status}")


class StorageFailure(WinzoError):
    """The key-value store could not be read or written"""

    def __init__(self, operation: str, key, cause: Exception = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Storage {operation} failed for {key}{detail}")
