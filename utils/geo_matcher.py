"""Coarse bounding-box pre-filter for duplicate candidates."""
from __future__ import annotations

from typing import Iterable, List, Optional

from flask import current_app

from models import CLOSED_STATUSES, Issue

DEFAULT_WINDOW_DEG = 0.001  # roughly 100 m


def find_nearby_candidates(
    lat: float,
    lng: float,
    category: str,
    exclude_statuses: Optional[Iterable[str]] = None,
    window: Optional[float] = None,
) -> List[Issue]:
    """Issues of the same category inside a +/- window box around (lat, lng).

    Over-selects on purpose; the duplicate oracle decides what is really the same problem.
    """
    if window is None:
        window = float(current_app.config.get("GEO_MATCH_WINDOW_DEG", DEFAULT_WINDOW_DEG))
    excluded = tuple(exclude_statuses) if exclude_statuses is not None else CLOSED_STATUSES

    query = Issue.query.filter(
        Issue.category == category,
        Issue.lat >= lat - window,
        Issue.lat <= lat + window,
        Issue.lng >= lng - window,
        Issue.lng <= lng + window,
    )
    if excluded:
        query = query.filter(Issue.status.notin_(excluded))
    return query.order_by(Issue.created_at.asc()).all()
