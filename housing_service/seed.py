"""
Load universities and dorms from JSON seed files.

Usage::

    python -m housing_service.seed universities.json [dorms.json]

Rows are upserted by slug (dorms by university slug + slug), so the
command can be re-run after editing the files. Seeded dorms are approved.
"""
import json
import sys
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session

from . import models
from .database import Base, SessionLocal, engine
from .logging_config import configure_logging
from .moderation import find_dorm
from .models import ModerationStatus
from .slugs import slugify

logger = structlog.get_logger(__name__)


def load_json(path: str) -> List[Dict[str, Any]]:
    with open(path, encoding="utf8") as fh:
        data = json.load(fh)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array")
    return data


def _list(value) -> List[str]:
    return [v for v in value if v] if isinstance(value, list) else []


def _number(value) -> Optional[float]:
    return value if isinstance(value, (int, float)) and not isinstance(value, bool) else None


def seed_universities(db: Session, items: Iterable[Dict[str, Any]]) -> int:
    """
    Upsert universities by slug. Returns the number of rows written.
    """
    count = 0
    for item in items:
        slug = item.get("slug") or slugify(item.get("name") or "")
        if not slug:
            logger.warning("seed_skipped", kind="university", reason="no name or slug")
            continue
        fields = {
            "name": item.get("name") or slug,
            "location": item.get("location"),
            "website": item.get("website"),
            "image_url": item.get("imageUrl") or item.get("imageURL"),
            "highlights": _list(item.get("highlights")),
            "founded_year": item.get("founded") or item.get("foundedYear"),
            "total_students": item.get("totalStudents"),
            "acceptance_rate": _number(item.get("acceptanceRate")),
        }
        university = db.query(models.University).filter(models.University.slug == slug).first()
        if university is None:
            university = models.University(slug=slug)
            db.add(university)
        for key, value in fields.items():
            setattr(university, key, value)
        count += 1
    db.commit()
    logger.info("seed_universities", count=count)
    return count


def seed_dorms(db: Session, items: Iterable[Dict[str, Any]]) -> int:
    """
    Upsert dorms by (universitySlug, slug). Returns the number of rows written.
    """
    count = 0
    for item in items:
        university_slug = item.get("universitySlug")
        slug = item.get("slug") or slugify(item.get("name") or "")
        if not university_slug or not slug:
            logger.warning("seed_skipped", kind="dorm", name=item.get("name"))
            continue

        # single imageUrl or a list of images
        images = _list(item.get("images"))
        if not images and item.get("imageUrl"):
            images = [item["imageUrl"]]

        fields = {
            "name": item.get("name") or slug,
            "image_url": item.get("imageUrl"),
            "images": images,
            "description": item.get("description"),
            "amenities": _list(item.get("amenities")),
            "room_types": _list(item.get("roomTypes")),
            "status": ModerationStatus.APPROVED,
        }
        dorm = find_dorm(db, university_slug, slug)
        if dorm is None:
            dorm = models.Dorm(university_slug=university_slug, slug=slug)
            db.add(dorm)
        for key, value in fields.items():
            setattr(dorm, key, value)
        count += 1
    db.commit()
    logger.info("seed_dorms", count=count)
    return count


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("usage: python -m housing_service.seed UNIVERSITIES_JSON [DORMS_JSON]")
        return 2

    configure_logging()
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_universities(db, load_json(argv[0]))
        if len(argv) > 1:
            seed_dorms(db, load_json(argv[1]))
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
