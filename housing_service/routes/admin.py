from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas, stats
from ..auth import require_admin
from ..database import get_db
from ..media import ImageStorage, get_image_storage
from ..models import ModerationStatus
from ..moderation import (
    approve_edit,
    decline_edit,
    get_dorm_or_404,
    get_review_or_404,
    review_detail,
    set_status,
)
from ..rate_limiter import api_limiter

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin), Depends(api_limiter)],
)


def _with_signed_media(review: models.Review, storage: ImageStorage) -> schemas.ReviewDetail:
    """
    Admin view of a review with presigned links for its stored images.
    """
    detail = review_detail(review)
    return detail.model_copy(
        update={
            "file_image": storage.signed_url(detail.file_image),
            "images": [storage.signed_url(url) for url in detail.images],
        }
    )


def _newest_first(query):
    return query.order_by(models.Review.created_at.desc(), models.Review.id.desc())


# ---------- reviews ----------

@router.get("/reviews/pending", response_model=List[schemas.ReviewDetail])
def pending_reviews(
    db: Session = Depends(get_db),
    storage: ImageStorage = Depends(get_image_storage),
):
    reviews = _newest_first(
        db.query(models.Review).filter(models.Review.status == ModerationStatus.PENDING)
    ).all()
    return [_with_signed_media(r, storage) for r in reviews]


@router.get("/reviews/all", response_model=List[schemas.ReviewDetail])
def all_reviews(
    db: Session = Depends(get_db),
    storage: ImageStorage = Depends(get_image_storage),
):
    reviews = _newest_first(db.query(models.Review)).all()
    return [_with_signed_media(r, storage) for r in reviews]


@router.get("/reviews/pending-edits", response_model=List[schemas.ReviewDetail])
def pending_edits(
    db: Session = Depends(get_db),
    storage: ImageStorage = Depends(get_image_storage),
):
    """
    Approved reviews whose owners submitted an edit awaiting review.

    The live fields and the ``pendingEdit`` snapshot are both returned so
    the two can be compared side by side.
    """
    reviews = _newest_first(
        db.query(models.Review).filter(models.Review.pending_edit.isnot(None))
    ).all()
    return [_with_signed_media(r, storage) for r in reviews]


@router.patch("/reviews/{review_id}/approve", response_model=schemas.ReviewModerated)
def approve_review(
    review_id: int,
    db: Session = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    review = get_review_or_404(db, review_id)
    review = set_status(db, review, ModerationStatus.APPROVED, admin["name"])
    return {"message": "Review approved", "review": review_detail(review)}


@router.patch("/reviews/{review_id}/decline", response_model=schemas.ReviewModerated)
def decline_review(
    review_id: int,
    db: Session = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    review = get_review_or_404(db, review_id)
    review = set_status(db, review, ModerationStatus.DECLINED, admin["name"])
    return {"message": "Review declined", "review": review_detail(review)}


@router.patch("/reviews/{review_id}/approve-edit", response_model=schemas.ReviewModerated)
def approve_review_edit(
    review_id: int,
    db: Session = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    review = approve_edit(db, get_review_or_404(db, review_id), admin["name"])
    return {"message": "Edit approved", "review": review_detail(review)}


@router.patch("/reviews/{review_id}/decline-edit", response_model=schemas.ReviewModerated)
def decline_review_edit(
    review_id: int,
    db: Session = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    review = decline_edit(db, get_review_or_404(db, review_id), admin["name"])
    return {"message": "Edit declined", "review": review_detail(review)}


@router.delete("/reviews/{review_id}", response_model=schemas.MessageResponse)
def delete_review(
    review_id: int,
    db: Session = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    review = get_review_or_404(db, review_id)
    db.delete(review)
    db.commit()
    logger.info("review_deleted", review_id=review_id, actor=admin["name"])
    return {"message": "Review deleted"}


# ---------- dorms ----------

@router.get("/dorms/pending", response_model=List[schemas.DormRead])
def pending_dorms(db: Session = Depends(get_db)):
    return (
        db.query(models.Dorm)
        .filter(models.Dorm.status == ModerationStatus.PENDING)
        .order_by(models.Dorm.created_at.desc(), models.Dorm.id.desc())
        .all()
    )


@router.get("/dorms/all", response_model=List[schemas.DormRead])
def all_dorms(db: Session = Depends(get_db)):
    return (
        db.query(models.Dorm)
        .order_by(models.Dorm.created_at.desc(), models.Dorm.id.desc())
        .all()
    )


@router.patch("/dorms/{dorm_id}/approve", response_model=schemas.DormSubmitted)
def approve_dorm(
    dorm_id: int,
    db: Session = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    dorm = set_status(db, get_dorm_or_404(db, dorm_id), ModerationStatus.APPROVED, admin["name"])
    return {"message": "Dorm approved", "dorm": dorm}


@router.patch("/dorms/{dorm_id}/decline", response_model=schemas.DormSubmitted)
def decline_dorm(
    dorm_id: int,
    db: Session = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    dorm = set_status(db, get_dorm_or_404(db, dorm_id), ModerationStatus.DECLINED, admin["name"])
    return {"message": "Dorm declined", "dorm": dorm}


@router.delete("/dorms/{dorm_id}", response_model=schemas.MessageResponse)
def delete_dorm(
    dorm_id: int,
    db: Session = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    dorm = get_dorm_or_404(db, dorm_id)
    db.delete(dorm)
    db.commit()
    logger.info("dorm_deleted", dorm_id=dorm_id, actor=admin["name"])
    return {"message": "Dorm deleted"}


# ---------- dashboard ----------

@router.get("/stats")
def dashboard_stats(
    db: Session = Depends(get_db),
    cache=Depends(stats.get_stats_cache),
) -> Dict[str, Any]:
    return stats.admin_stats(db, cache)
