from enum import Enum

DEFAULT_SAVEPOINT_PREFIX = "transactional_testing_"

# Postgres caches 64 subtransactions per backend before spilling to disk
DEFAULT_RELEASE_THRESHOLD = 56


class SessionState(Enum):
    """Outer transaction state machine states"""

    IDLE = "idle"  # No outer transaction
    OPENING = "opening"  # Requested from the client, not yet begun
    OPEN = "open"  # Held open, queries are routed into it
    ROLLING_BACK = "rolling_back"  # Signalled to end, rollback in progress
