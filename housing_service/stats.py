"""
Derived statistics over approved reviews, memoised in the stats cache.

Every aggregate is a plain fold: review counts and arithmetic means of
each review's overall rating. Sorting is stable over id-ordered rows, so
ties keep insertion order. Cached values are JSON-ready dicts and are not
invalidated on writes; they age out after the cache TTL.
"""
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog
from fastapi import Request
from sqlalchemy.orm import Session

from . import models, schemas
from .models import ModerationStatus, overall_rating, utcnow

logger = structlog.get_logger(__name__)

HOMEPAGE_TOP_N = 7
ADMIN_TOP_N = 5


def get_stats_cache(request: Request):
    """
    Dependency: the cache object held on the application state.
    """
    return request.app.state.stats_cache


def cached(cache, key: str, compute: Callable[[], Any]) -> Any:
    """
    Return ``cache[key]`` if fresh, else compute, store and return it.
    """
    value = cache.get(key)
    if value is not None:
        logger.debug("stats_cache_hit", key=key)
        return value
    logger.debug("stats_cache_miss", key=key)
    value = compute()
    if value is not None:
        cache.set(key, value)
    return value


def _approved_reviews(db: Session, **filters) -> List[models.Review]:
    query = db.query(models.Review).filter(
        models.Review.status == ModerationStatus.APPROVED
    )
    for column, value in filters.items():
        query = query.filter(getattr(models.Review, column) == value)
    return query.order_by(models.Review.id).all()


def _approved_dorms(
    db: Session, university_slug: Optional[str] = None, by_name: bool = False
) -> List[models.Dorm]:
    query = db.query(models.Dorm).filter(models.Dorm.status == ModerationStatus.APPROVED)
    if university_slug is not None:
        query = query.filter(models.Dorm.university_slug == university_slug)
    if by_name:
        query = query.order_by(models.Dorm.name)
    return query.order_by(models.Dorm.id).all()


def _fold_ratings(reviews, key: Callable[[models.Review], Any]) -> Dict[Any, Dict[str, float]]:
    """
    Group reviews by ``key`` into ``{reviewCount, totalRating, avgRating}``.
    """
    stats: Dict[Any, Dict[str, float]] = {}
    for review in reviews:
        k = key(review)
        if k is None:
            continue
        entry = stats.setdefault(k, {"reviewCount": 0, "totalRating": 0.0, "avgRating": 0.0})
        entry["reviewCount"] += 1
        entry["totalRating"] += overall_rating(review)
    for entry in stats.values():
        entry["avgRating"] = entry["totalRating"] / entry["reviewCount"]
    return stats


def _dorm_payload(dorm: models.Dorm, stats: Optional[Dict[str, float]]) -> Dict[str, Any]:
    stats = stats or {"avgRating": 0.0, "reviewCount": 0}
    return schemas.DormWithStats.model_validate(dorm).model_copy(
        update={"avg_rating": stats["avgRating"], "review_count": stats["reviewCount"]}
    ).model_dump(by_alias=True, mode="json")


# ---------- homepage ----------

def compute_homepage_stats(db: Session) -> Dict[str, Any]:
    universities = db.query(models.University).order_by(models.University.id).all()
    dorms = _approved_dorms(db)
    reviews = _approved_reviews(db)

    known = {u.slug for u in universities}
    university_stats = {u.slug: {"reviewCount": 0} for u in universities}
    for review in reviews:
        if review.university in known:
            university_stats[review.university]["reviewCount"] += 1

    dorm_stats = _fold_ratings(
        reviews,
        lambda r: f"{r.university}:{r.dorm}" if r.dorm else None,
    )

    enriched_universities = []
    for uni in universities:
        payload = schemas.UniversityRead.model_validate(uni).model_dump(by_alias=True, mode="json")
        payload["reviewCount"] = university_stats[uni.slug]["reviewCount"]
        enriched_universities.append(payload)

    enriched_dorms = [
        _dorm_payload(d, dorm_stats.get(f"{d.university_slug}:{d.name}")) for d in dorms
    ]

    top_universities = sorted(
        enriched_universities, key=lambda u: u["reviewCount"], reverse=True
    )[:HOMEPAGE_TOP_N]
    top_rated_dorms = sorted(
        enriched_dorms, key=lambda d: (d["avgRating"], d["reviewCount"]), reverse=True
    )[:HOMEPAGE_TOP_N]
    most_reviewed_dorms = sorted(
        enriched_dorms, key=lambda d: d["reviewCount"], reverse=True
    )[:HOMEPAGE_TOP_N]

    return {
        "topUniversities": top_universities,
        "topRatedDorms": top_rated_dorms,
        "mostReviewedDorms": most_reviewed_dorms,
        "universityStats": university_stats,
        "dormStats": dorm_stats,
    }


def homepage_stats(db: Session, cache) -> Dict[str, Any]:
    return cached(cache, "homepage-stats", lambda: compute_homepage_stats(db))


# ---------- university dashboard ----------

def compute_university_dorm_stats(db: Session, university_slug: str) -> List[Dict[str, Any]]:
    dorms = _approved_dorms(db, university_slug, by_name=True)
    stats = _fold_ratings(
        _approved_reviews(db, university=university_slug), lambda r: r.dorm
    )
    return [_dorm_payload(d, stats.get(d.name)) for d in dorms]


def university_dorm_stats(db: Session, cache, university_slug: str) -> List[Dict[str, Any]]:
    return cached(
        cache,
        f"dorms-stats:{university_slug}",
        lambda: compute_university_dorm_stats(db, university_slug),
    )


def compute_dorm_detail(db: Session, university_slug: str, dorm_slug: str) -> Optional[Dict[str, Any]]:
    dorm = (
        db.query(models.Dorm)
        .filter(
            models.Dorm.university_slug == university_slug,
            models.Dorm.slug == dorm_slug,
            models.Dorm.status == ModerationStatus.APPROVED,
        )
        .first()
    )
    if dorm is None:
        return None
    stats = _fold_ratings(
        _approved_reviews(db, university=university_slug, dorm=dorm.name),
        lambda r: r.dorm,
    )
    return _dorm_payload(dorm, stats.get(dorm.name))


def dorm_detail(db: Session, cache, university_slug: str, dorm_slug: str) -> Optional[Dict[str, Any]]:
    # misses (unknown dorm) are not cached
    return cached(
        cache,
        f"dorm:{university_slug}:{dorm_slug}",
        lambda: compute_dorm_detail(db, university_slug, dorm_slug),
    )


# ---------- admin dashboard ----------

def compute_admin_stats(db: Session) -> Dict[str, Any]:
    now = utcnow()
    week_ago = now - timedelta(days=7)
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

    Review = models.Review
    users_total = db.query(models.User).count()
    users_new = db.query(models.User).filter(models.User.created_at >= week_ago).count()

    reviews = _approved_reviews(db)
    per_dorm: Dict[tuple, int] = {}
    per_university: Dict[str, int] = {}
    for review in reviews:
        if review.dorm:
            key = (review.university, review.dorm)
            per_dorm[key] = per_dorm.get(key, 0) + 1
        if review.university:
            per_university[review.university] = per_university.get(review.university, 0) + 1

    top_dorms = sorted(per_dorm.items(), key=lambda kv: kv[1], reverse=True)[:ADMIN_TOP_N]
    top_universities = sorted(
        per_university.items(), key=lambda kv: kv[1], reverse=True
    )[:ADMIN_TOP_N]

    return {
        "users": {"total": users_total, "newThisWeek": users_new},
        "reviews": {
            "total": db.query(Review).count(),
            "approved": len(reviews),
            "pending": db.query(Review).filter(Review.status == ModerationStatus.PENDING).count(),
            "today": db.query(Review).filter(Review.created_at >= start_of_day).count(),
            "thisWeek": db.query(Review).filter(Review.created_at >= week_ago).count(),
        },
        "dorms": {"total": db.query(models.Dorm).count()},
        "topDorms": [
            {"dorm": dorm, "university": university, "reviewCount": count}
            for (university, dorm), count in top_dorms
        ],
        "topUniversities": [
            {"university": university, "reviewCount": count}
            for university, count in top_universities
        ],
    }


def admin_stats(db: Session, cache) -> Dict[str, Any]:
    return cached(cache, "admin-stats", lambda: compute_admin_stats(db))
