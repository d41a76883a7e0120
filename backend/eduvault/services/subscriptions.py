from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from eduvault.core.config import settings
from eduvault.models.subscription import Subscription, SubscriptionStatus
from eduvault.services.content_policy import naive_utc, utcnow


def get_user_subscription(db: Session, *, user_id, course_id, year: int) -> Subscription | None:
    """The live subscription for one academic year of a course, if any."""
    now = utcnow()
    rows = db.scalars(
        select(Subscription)
        .where(
            Subscription.user_id == uuid.UUID(str(user_id)),
            Subscription.course_id == uuid.UUID(str(course_id)),
            Subscription.year == int(year),
            Subscription.status == SubscriptionStatus.active,
        )
        .order_by(Subscription.expiry_date.desc())
    ).all()
    for sub in rows:
        if naive_utc(sub.expiry_date) > now:
            return sub
    return None


def has_active_subscription(db: Session, *, user_id, course_id, year: int) -> bool:
    return get_user_subscription(db, user_id=user_id, course_id=course_id, year=year) is not None


def subscriptions_by_year(db: Session, *, user_id, course_id, year: int | None = None) -> dict[int, bool]:
    years = [int(year)] if year is not None else list(range(1, int(settings.max_academic_year) + 1))
    return {y: has_active_subscription(db, user_id=user_id, course_id=course_id, year=y) for y in years}


def subscription_info() -> dict:
    return {
        "price": int(settings.subscription_price),
        "currency": str(settings.subscription_currency),
        "duration": str(settings.subscription_duration),
        "per_year": True,
        "per_course": True,
    }
