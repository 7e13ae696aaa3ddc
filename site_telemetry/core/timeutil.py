from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 date or date-time; naive values are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError("must be an ISO-8601 timestamp")

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_epoch_us(moment: datetime) -> int:
    """Whole microseconds since the epoch, exact for any datetime."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - EPOCH) // timedelta(microseconds=1)
