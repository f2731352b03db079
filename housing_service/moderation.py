"""
Moderation workflow for reviews and dorms.

Reviews and user-submitted dorms move ``pending -> approved | declined``.
Transitions are admin-only and idempotent: repeating one leaves the same
state behind. Approved reviews can carry a ``pending_edit`` snapshot that
only replaces the live fields once an admin approves it.
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from . import models, schemas
from .database import commit_unique
from .errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from .media import ImageStorage
from .models import EDITABLE_REVIEW_FIELDS, ModerationStatus, utcnow
from .slugs import slugify

logger = structlog.get_logger(__name__)

UPVOTE = "upvote"
DOWNVOTE = "downvote"


# ---------- lookups ----------

def get_review_or_404(db: Session, review_id: int) -> models.Review:
    """
    Load a review by ID or raise NotFoundError.
    """
    review = db.query(models.Review).filter(models.Review.id == review_id).first()
    if not review:
        raise NotFoundError("Review not found")
    return review


def get_public_review_or_404(db: Session, review_id: int) -> models.Review:
    """
    Load an approved review; pending and declined ones are reported missing.
    """
    review = (
        db.query(models.Review)
        .filter(models.Review.id == review_id, visible(models.Review))
        .first()
    )
    if not review:
        raise NotFoundError("Review not found")
    return review


def get_dorm_or_404(db: Session, dorm_id: int) -> models.Dorm:
    dorm = db.query(models.Dorm).filter(models.Dorm.id == dorm_id).first()
    if not dorm:
        raise NotFoundError("Dorm not found")
    return dorm


def find_dorm(db: Session, university_slug: str, slug: str) -> Optional[models.Dorm]:
    return (
        db.query(models.Dorm)
        .filter(models.Dorm.university_slug == university_slug, models.Dorm.slug == slug)
        .first()
    )


def visible(model):
    """Filter clause for rows the public may see."""
    return model.status == ModerationStatus.APPROVED


# ---------- creation ----------

def create_review(
    db: Session,
    review_in: schemas.ReviewCreate,
    user_email: Optional[str],
    storage: ImageStorage,
) -> models.Review:
    """
    Persist a new review in the pending state.

    ``user_email`` is the verified token email, or None for an anonymous
    submission; it decides both ``user`` and ``verified``.
    """
    file_image = storage.store(review_in.file_image, "reviews/main")
    images = storage.store_many(review_in.images, "reviews/gallery")

    review = models.Review(
        university=review_in.university,
        dorm=review_in.dorm,
        room=review_in.room,
        bathroom=review_in.bathroom,
        building=review_in.building,
        amenities=review_in.amenities,
        location=review_in.location,
        description=review_in.description,
        year=list(review_in.year),
        room_type=list(review_in.room_type),
        would_dorm_again=bool(review_in.would_dorm_again),
        file_image=file_image,
        images=images,
        user=user_email or "",
        verified=bool(user_email),
        status=ModerationStatus.PENDING,
        upvotes=[],
        downvotes=[],
    )
    db.add(review)
    db.commit()
    db.refresh(review)
    logger.info(
        "review_submitted",
        review_id=review.id,
        university=review.university,
        dorm=review.dorm,
        verified=review.verified,
        images=len(images),
    )
    return review


def create_dorm(
    db: Session,
    dorm_in: schemas.DormCreate,
    user_email: str,
    storage: ImageStorage,
) -> models.Dorm:
    """
    Persist a user-submitted dorm awaiting approval.

    Raises
    ------
    NotFoundError
        If the university slug is unknown.
    ConflictError
        If the university already has a dorm with the same slug.
    """
    university = (
        db.query(models.University)
        .filter(models.University.slug == dorm_in.university_slug)
        .first()
    )
    if not university:
        raise NotFoundError("University not found")

    slug = slugify(dorm_in.name)
    if not slug:
        raise ValidationError(
            errors=[{"path": ["name"], "message": "Name must contain letters or digits"}]
        )
    if find_dorm(db, dorm_in.university_slug, slug):
        raise ConflictError("A dorm with this name already exists for this university")

    dorm = models.Dorm(
        name=dorm_in.name,
        slug=slug,
        university_slug=dorm_in.university_slug,
        description=dorm_in.description or "",
        image_url=storage.store(dorm_in.image_url, "dorms") or None,
        images=[],
        amenities=list(dorm_in.amenities or []),
        room_types=list(dorm_in.room_types or []),
        status=ModerationStatus.PENDING,
        submitted_by=user_email,
    )
    db.add(dorm)
    commit_unique(db, "A dorm with this name already exists for this university")
    db.refresh(dorm)
    logger.info(
        "dorm_submitted",
        dorm_id=dorm.id,
        university=dorm.university_slug,
        submitted_by=user_email,
    )
    return dorm


# ---------- status transitions ----------

def set_status(db: Session, obj, new_status: ModerationStatus, actor: str):
    """
    Move a review or dorm to ``new_status``.

    Re-applying the current status is accepted and leaves the row as is.
    Declining a review also drops any edit waiting for moderation.
    """
    previous = obj.status
    obj.status = new_status
    if new_status == ModerationStatus.DECLINED and getattr(obj, "pending_edit", None):
        obj.pending_edit = None
    db.commit()
    db.refresh(obj)
    logger.info(
        "moderation_transition",
        kind=obj.__tablename__,
        id=obj.id,
        previous=previous.value if previous else None,
        status=new_status.value,
        actor=actor,
    )
    return obj


# ---------- edit workflow ----------

def _snapshot(edit: schemas.ReviewEdit, review: models.Review, storage: ImageStorage) -> Dict[str, Any]:
    images = (
        storage.store_many(edit.images, "reviews/gallery")
        if edit.images is not None
        else list(review.images or [])
    )
    return {
        "room": edit.room,
        "bathroom": edit.bathroom,
        "building": edit.building,
        "amenities": edit.amenities,
        "location": edit.location,
        "description": edit.description,
        "year": list(edit.year),
        "room_type": list(edit.room_type),
        "would_dorm_again": bool(edit.would_dorm_again),
        "images": images,
    }


def submit_edit(
    db: Session,
    review: models.Review,
    edit: schemas.ReviewEdit,
    owner_email: str,
    storage: ImageStorage,
) -> models.Review:
    """
    Apply an owner's edit according to the review's state.

    - approved: stored as ``pending_edit``; live fields untouched.
    - pending: applied directly, nothing is public yet.
    - declined: refused.

    Raises
    ------
    AuthorizationError
        If the caller does not own the review.
    ValidationError
        If the review was declined.
    """
    if not review.user or review.user != owner_email:
        raise AuthorizationError("Not allowed to edit this review")
    if review.status == ModerationStatus.DECLINED:
        raise ValidationError("Declined reviews cannot be edited")

    snapshot = _snapshot(edit, review, storage)

    if review.status == ModerationStatus.PENDING:
        for field in EDITABLE_REVIEW_FIELDS:
            setattr(review, field, snapshot[field])
        logger.info("review_edit_applied", review_id=review.id)
    else:
        snapshot["submitted_at"] = utcnow().isoformat()
        review.pending_edit = snapshot
        logger.info("review_edit_pending", review_id=review.id)

    db.commit()
    db.refresh(review)
    return review


def approve_edit(db: Session, review: models.Review, actor: str) -> models.Review:
    """
    Copy the pending edit onto the live fields and clear it.
    """
    if not review.pending_edit:
        raise NotFoundError("No pending edit for this review")
    edit = dict(review.pending_edit)
    for field in EDITABLE_REVIEW_FIELDS:
        if field in edit:
            setattr(review, field, edit[field])
    review.pending_edit = None
    db.commit()
    db.refresh(review)
    logger.info("review_edit_approved", review_id=review.id, actor=actor)
    return review


def decline_edit(db: Session, review: models.Review, actor: str) -> models.Review:
    if not review.pending_edit:
        raise NotFoundError("No pending edit for this review")
    review.pending_edit = None
    db.commit()
    db.refresh(review)
    logger.info("review_edit_declined", review_id=review.id, actor=actor)
    return review


# ---------- votes ----------

def apply_vote(upvotes, downvotes, voter: str, vote_type: str):
    """
    Pure vote transition on (upvotes, downvotes).

    Repeating a vote removes it; the opposite vote moves the voter
    between the two sets. Returns new lists.
    """
    up = [v for v in (upvotes or []) if v != voter]
    down = [v for v in (downvotes or []) if v != voter]
    already = voter in (upvotes or []) if vote_type == UPVOTE else voter in (downvotes or [])
    if not already:
        (up if vote_type == UPVOTE else down).append(voter)
    return up, down


def cast_vote(db: Session, review: models.Review, voter: str, vote_type: str) -> models.Review:
    # reassign so the JSON columns are flagged dirty
    review.upvotes, review.downvotes = apply_vote(
        review.upvotes, review.downvotes, voter, vote_type
    )
    db.commit()
    db.refresh(review)
    return review


# ---------- views ----------

def review_detail(review: models.Review, overlay_pending: bool = False) -> schemas.ReviewDetail:
    """
    Owner/admin representation of a review.

    With ``overlay_pending`` the pending edit's fields replace the live
    ones, which is how the owner's account page shows an edit in review.
    """
    detail = schemas.ReviewDetail.model_validate(review)
    detail.has_pending_edit = bool(review.pending_edit)
    if overlay_pending and review.pending_edit:
        changes = {
            k: v for k, v in review.pending_edit.items() if k in EDITABLE_REVIEW_FIELDS
        }
        detail = detail.model_copy(update=changes)
    return detail
