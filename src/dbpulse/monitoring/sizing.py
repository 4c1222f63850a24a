"""Size growth derived from two observed measurements.

Only observed growth is extrapolated. Without a previous measurement the
rate is zero and both projections equal the current size.
"""

from dataclasses import replace
from typing import Optional

from dbpulse.database.models import DatabaseSize

SECONDS_PER_DAY = 86400.0


def apply_growth(current: DatabaseSize, previous: Optional[DatabaseSize] = None) -> DatabaseSize:
    """Return ``current`` with growth rate and 30/90 day projections filled in."""
    rate = 0.0
    previous_at = None

    if (
        previous is not None
        and previous.last_measured is not None
        and current.last_measured is not None
        and previous.database_name == current.database_name
    ):
        elapsed_days = (
            current.last_measured - previous.last_measured
        ).total_seconds() / SECONDS_PER_DAY
        if elapsed_days > 0:
            rate = (current.total_size_bytes - previous.total_size_bytes) / elapsed_days
            previous_at = previous.last_measured

    return replace(
        current,
        growth_rate_bytes_per_day=rate,
        previous_measurement=previous_at,
        projected_size_in_30_days=max(0, int(current.total_size_bytes + rate * 30)),
        projected_size_in_90_days=max(0, int(current.total_size_bytes + rate * 90)),
    )
