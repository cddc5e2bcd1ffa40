# prompt_collector/errors.py
"""
Error taxonomy shared by the store, the insight miner and the API layer.

Every error carries an `error_code` string that the API maps onto the
standard error envelope ({"status": "error", "error_code": ..., "message": ...}).
"""

E_STORAGE = "E_STORAGE"
E_VALIDATION = "E_VALIDATION"
E_NOT_FOUND = "E_NOT_FOUND"
E_FOREIGN_KEY = "E_FOREIGN_KEY"
E_MINER_BUSY = "E_MINER_BUSY"


class CollectorError(Exception):
    error_code = "E_INTERNAL"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StorageError(CollectorError):
    """Underlying I/O failure. The operation was not applied."""
    error_code = E_STORAGE


class ValidationError(StorageError):
    """Missing or blank required field. Rejected before any write."""
    error_code = E_VALIDATION


class NotFoundError(CollectorError):
    error_code = E_NOT_FOUND


class ForeignKeyError(CollectorError):
    error_code = E_FOREIGN_KEY


class MinerBusyError(CollectorError):
    error_code = E_MINER_BUSY
