class AttendanceError(Exception):
    """Base class for every failure raised by the attendance core."""


class InputError(AttendanceError, ValueError):
    """Caller supplied something unusable. Nothing was changed."""


class ResourceError(AttendanceError):
    """Camera or embedding provider unavailable. The recognition session is Idle."""


class PersistenceError(AttendanceError):
    """
    The ledger rejected a save. The whole batch was rolled back, so the
    caller keeps its working set and may retry the identical batch.
    """
