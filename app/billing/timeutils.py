from datetime import datetime, timedelta, timezone

def now_utc():
    return datetime.now(timezone.utc)

def minutes_ago(minutes: int, current_utc: datetime = None) -> datetime:
    return (current_utc or now_utc()) - timedelta(minutes=minutes)
