"""
Change classification between two status snapshots
"""
from typing import Optional

from flightwatch.models.schemas import CanonicalStatus, Change, ChangeKind

DELAY_THRESHOLD_MINUTES = 15
DELAY_BUCKET_MINUTES = 15


def delay_bucket(delay_minutes: int) -> int:
    """Floor of the delay to a 15-minute bucket (negative delays bucket below zero)"""
    return (delay_minutes // DELAY_BUCKET_MINUTES) * DELAY_BUCKET_MINUTES


def classify(previous: Optional[CanonicalStatus], current: CanonicalStatus) -> Change:
    """
    Rules, first match wins:
      1. newly cancelled
      2. delay moved by 15+ minutes, or an already 15+ late delay changed
         bucket (or first sighting already 15+ late)
      3. gate or terminal moved (needs a previous snapshot)
      4. nothing reportable
    """
    base = dict(
        delay_minutes=current.delay_minutes,
        previous_delay_minutes=previous.delay_minutes if previous else None,
        terminal=current.terminal,
        gate=current.gate,
        previous_terminal=previous.terminal if previous else None,
        previous_gate=previous.gate if previous else None,
        status=current,
    )

    if current.cancelled and not (previous and previous.cancelled):
        return Change(kind=ChangeKind.CANCELLATION, **base)

    if previous is None:
        if current.delay_minutes >= DELAY_THRESHOLD_MINUTES:
            return Change(kind=ChangeKind.DELAY, **base)
        return Change(kind=ChangeKind.NO_CHANGE, **base)

    if abs(current.delay_minutes - previous.delay_minutes) >= DELAY_THRESHOLD_MINUTES:
        return Change(kind=ChangeKind.DELAY, **base)
    if (previous.delay_minutes >= DELAY_THRESHOLD_MINUTES
            and current.delay_minutes >= DELAY_THRESHOLD_MINUTES
            and delay_bucket(current.delay_minutes) != delay_bucket(previous.delay_minutes)):
        return Change(kind=ChangeKind.DELAY, **base)

    if current.gate != previous.gate or current.terminal != previous.terminal:
        return Change(kind=ChangeKind.LOCATION, **base)

    return Change(kind=ChangeKind.NO_CHANGE, **base)


def fingerprint(change: Change) -> str:
    """Dedup key: kind, delay bucket, terminal and gate"""
    return ":".join([
        change.kind.value,
        str(delay_bucket(change.delay_minutes)),
        change.terminal or "-",
        change.gate or "-",
    ])
