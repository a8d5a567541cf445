class TransactionalError(Exception):
    """Base exception for all errors raised by transactional_testing"""

    pass


class ClientError(TransactionalError):
    """Raised by the data-access client"""

    pass


class RecordNotFound(ClientError):
    """Raised when a single-row query finds nothing"""

    pass


class TransactionTimeoutError(ClientError):
    """Raised when a client transaction callback exceeds its timeout"""

    pass


class HelperError(TransactionalError):
    """Base exception for the transactional testing helper"""

    pass


class AlreadyActiveError(HelperError):
    """Raised when starting a transaction while one is still open"""

    pass


class NoActiveTransactionError(HelperError):
    """Raised when an operation requires an open transaction"""

    pass


class InvalidTransactionArgumentError(HelperError):
    """Raised when a nested transaction gets neither a sequence nor
    a callback"""

    pass


class TransactionChangedError(HelperError):
    """Raised when the outer transaction changed underneath a savepoint"""

    pass
