from datetime import timezone

DEFAULT_TIME_COLUMN = "TimeGenerated"


def format_timestamp(dt):
    """Full-precision ISO-8601 UTC, e.g. 2024-03-01T15:00:00.000000Z."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def time_bounds(time_range, time_column=DEFAULT_TIME_COLUMN):
    return (f"{time_column} >= datetime({format_timestamp(time_range.start)}) "
            f"and {time_column} < datetime({format_timestamp(time_range.end)})")


def build_fetch_query(table, time_range, where=None, time_column=DEFAULT_TIME_COLUMN):
    parts = [table, f"where {time_bounds(time_range, time_column)}"]
    if where and where.strip():
        parts.append(f"where {where.strip()}")
    return " | ".join(parts)


def build_count_query(table, time_range, where=None, time_column=DEFAULT_TIME_COLUMN):
    return build_fetch_query(table, time_range, where, time_column) + " | count"
