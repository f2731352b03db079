from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_claims, get_optional_claims
from ..database import get_db
from ..media import ImageStorage, get_image_storage
from ..moderation import (
    cast_vote,
    create_review,
    get_public_review_or_404,
    get_review_or_404,
    review_detail,
    submit_edit,
    visible,
)
from ..rate_limiter import api_limiter

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


@router.get("", response_model=List[schemas.ReviewRead])
def list_reviews(
    university: Optional[str] = None,
    dorm: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    skip: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """
    Public endpoint: approved reviews, newest first.

    Query params
    ------------
    - university: optional university slug.
    - dorm: optional dorm name.
    - limit / skip: pagination (limit at most 100).
    """
    query = db.query(models.Review).filter(visible(models.Review))
    if university:
        query = query.filter(models.Review.university == university)
    if dorm:
        query = query.filter(models.Review.dorm == dorm)
    return (
        query.order_by(models.Review.created_at.desc(), models.Review.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


@router.post(
    "",
    response_model=schemas.ReviewRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(api_limiter)],
)
def submit_review(
    review_in: schemas.ReviewCreate,
    db: Session = Depends(get_db),
    claims: Optional[Dict[str, Any]] = Depends(get_optional_claims),
    storage: ImageStorage = Depends(get_image_storage),
):
    """
    Submit a review. It stays hidden until an admin approves it.

    A valid bearer token marks the review as verified and links it to the
    caller; without one the review is anonymous.
    """
    email = claims.get("name") if claims else None
    return create_review(db, review_in, email, storage)


# must be declared before /{review_id}
@router.get("/user", response_model=List[schemas.ReviewDetail])
def my_reviews(
    db: Session = Depends(get_db),
    claims: Dict[str, Any] = Depends(get_current_claims),
):
    """
    The caller's reviews in every status, pending edits shown in place.
    """
    reviews = (
        db.query(models.Review)
        .filter(models.Review.user == claims["name"])
        .order_by(models.Review.created_at.desc(), models.Review.id.desc())
        .all()
    )
    return [review_detail(r, overlay_pending=True) for r in reviews]


@router.put(
    "/{review_id}",
    response_model=schemas.ReviewDetail,
    dependencies=[Depends(api_limiter)],
)
def edit_review(
    review_id: int,
    edit: schemas.ReviewEdit,
    db: Session = Depends(get_db),
    claims: Dict[str, Any] = Depends(get_current_claims),
    storage: ImageStorage = Depends(get_image_storage),
):
    """
    Edit one of the caller's reviews.

    Approved reviews keep their public content until an admin approves
    the edit; pending reviews are updated in place.

    Raises
    ------
    NotFoundError
        Unknown review id.
    AuthorizationError
        The caller does not own the review.
    ValidationError
        The review was declined.
    """
    review = get_review_or_404(db, review_id)
    review = submit_edit(db, review, edit, claims["name"], storage)
    return review_detail(review)


@router.post(
    "/{review_id}/vote",
    response_model=schemas.ReviewRead,
    dependencies=[Depends(api_limiter)],
)
def vote_review(
    review_id: int,
    body: schemas.VoteRequest,
    db: Session = Depends(get_db),
    claims: Dict[str, Any] = Depends(get_current_claims),
):
    review = get_public_review_or_404(db, review_id)
    voter = str(claims.get("userId") or claims["name"])
    return cast_vote(db, review, voter, body.type)
