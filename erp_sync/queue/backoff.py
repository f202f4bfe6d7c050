from typing import List, Optional

from erp_sync.core.config import RETRY_DELAYS


def backoff_delay(attempts: int, delays: Optional[List[int]] = None) -> int:
    """
    Seconds to wait before the next attempt after `attempts` failures.
    Saturates at the last entry: 1 -> 60s, 2 -> 300s, ... 5 and beyond -> 7200s.
    """
    schedule = delays or RETRY_DELAYS
    index = min(max(attempts - 1, 0), len(schedule) - 1)
    return schedule[index]
