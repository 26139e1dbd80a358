from datetime import datetime, timedelta


def backoff_delay(attempt: int, base_seconds: float, max_seconds: float) -> float:
    """Delay before retry after the *attempt*-th failure.

    ``min(base * 2^(attempt-1), max)``; zero before any failure. Non-decreasing
    in *attempt* and never above *max_seconds*.
    """
    if attempt <= 0:
        return 0.0
    # Cap the exponent so large attempt counts cannot overflow.
    exponent = min(attempt - 1, 62)
    return float(min(base_seconds * (2**exponent), max_seconds))


def next_eligible_at(
    now: datetime, attempt: int, base_seconds: float, max_seconds: float
) -> datetime:
    return now + timedelta(seconds=backoff_delay(attempt, base_seconds, max_seconds))
