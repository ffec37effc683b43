"""Error taxonomy for the sync, paging and send engine."""


class SmsyncError(Exception):
    """Base class for smsync errors."""


class SourceUnavailable(SmsyncError):
    """An external message store operation failed (e.g. revoked access)."""

    def __init__(self, operation: str, table: str | None = None, cause: Exception | None = None):
        self.operation = operation
        self.table = table
        self.cause = cause
        where = f" on {table}" if table else ""
        detail = f": {cause}" if cause else ""
        super().__init__(f"{operation}{where} failed{detail}")


class MalformedRecord(SmsyncError):
    """A store row is missing a field needed to identify it."""

    def __init__(self, table: str, field: str, row: dict | None = None):
        self.table = table
        self.field = field
        self.row = row
        super().__init__(f"{table} row missing {field!r}")


class DeliveryFailed(SmsyncError):
    """A transport reported (or raised) failure for one send attempt."""

    def __init__(self, token: str, reason: str = ""):
        self.token = token
        self.reason = reason
        super().__init__(f"delivery failed for {token}" + (f": {reason}" if reason else ""))


class PartExtractionFailed(SmsyncError):
    """Multimedia content could not be read."""

    def __init__(self, mms_id: int, cause: Exception | None = None):
        self.mms_id = mms_id
        self.cause = cause
        super().__init__(f"could not extract parts of mms {mms_id}" + (f": {cause}" if cause else ""))
