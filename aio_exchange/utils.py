import datetime
import time

perf_counter = time.perf_counter


def perf_counter_elapsed(started_at: float) -> float:
    return max(0.0, perf_counter() - started_at)


def perf_counter_elapsed_ms(started_at: float) -> int:
    return int(perf_counter_elapsed(started_at) * 1000)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def format_timestamp(timestamp: datetime.datetime) -> str:
    return f"{timestamp:%H:%M:%S}.{timestamp.microsecond // 1000:03d}"
