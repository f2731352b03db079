from typing import Any, Dict, List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import models, schemas, stats
from ..auth import get_current_claims
from ..database import get_db
from ..errors import NotFoundError
from ..media import ImageStorage, get_image_storage
from ..moderation import create_dorm, visible
from ..rate_limiter import api_limiter, read_only_limiter

router = APIRouter(prefix="/api", tags=["universities"])


@router.get("/universities", response_model=List[schemas.UniversityRead])
def list_universities(db: Session = Depends(get_db)):
    """
    Public endpoint: all universities sorted by name.
    """
    return db.query(models.University).order_by(models.University.name).all()


# must be declared before /universities/{slug}
@router.get("/universities/{slug}/dorms", response_model=List[schemas.DormRead])
def list_university_dorms(slug: str, db: Session = Depends(get_db)):
    """
    Public endpoint: approved dorms for a university, sorted by name.
    """
    return (
        db.query(models.Dorm)
        .filter(models.Dorm.university_slug == slug, visible(models.Dorm))
        .order_by(models.Dorm.name)
        .all()
    )


@router.get(
    "/universities/{slug}/dorms-stats",
    dependencies=[Depends(read_only_limiter)],
)
def list_university_dorm_stats(
    slug: str,
    db: Session = Depends(get_db),
    cache=Depends(stats.get_stats_cache),
) -> List[Dict[str, Any]]:
    """
    Approved dorms of a university enriched with ``avgRating`` and
    ``reviewCount``. Cached for the stats TTL.
    """
    return stats.university_dorm_stats(db, cache, slug)


@router.get(
    "/universities/{slug}/dorms/{dorm_slug}",
    dependencies=[Depends(read_only_limiter)],
)
def get_dorm(
    slug: str,
    dorm_slug: str,
    db: Session = Depends(get_db),
    cache=Depends(stats.get_stats_cache),
) -> Dict[str, Any]:
    detail = stats.dorm_detail(db, cache, slug, dorm_slug)
    if detail is None:
        raise NotFoundError("Dorm not found")
    return detail


@router.get("/universities/{slug}", response_model=schemas.UniversityRead)
def get_university(slug: str, db: Session = Depends(get_db)):
    university = (
        db.query(models.University).filter(models.University.slug == slug).first()
    )
    if not university:
        raise NotFoundError("University not found")
    return university


@router.get("/dorms", response_model=List[schemas.DormRead])
def list_dorms(db: Session = Depends(get_db)):
    return (
        db.query(models.Dorm)
        .filter(visible(models.Dorm))
        .order_by(models.Dorm.university_slug, models.Dorm.name)
        .all()
    )


@router.post(
    "/dorms",
    response_model=schemas.DormSubmitted,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(api_limiter)],
)
def submit_dorm(
    dorm_in: schemas.DormCreate,
    db: Session = Depends(get_db),
    claims: Dict = Depends(get_current_claims),
    storage: ImageStorage = Depends(get_image_storage),
):
    """
    Submit a new dorm for admin approval.

    Access
    ------
    - Any authenticated user.

    Behavior
    --------
    - Slug is derived from the name and must be unique per university.
    - The dorm starts pending and is hidden until approved.
    """
    dorm = create_dorm(db, dorm_in, claims["name"], storage)
    return {"message": "Dorm submitted for approval", "dorm": dorm}


@router.get("/stats/homepage", dependencies=[Depends(read_only_limiter)])
def homepage_stats(
    db: Session = Depends(get_db),
    cache=Depends(stats.get_stats_cache),
) -> Dict[str, Any]:
    """
    Top universities and dorms for the homepage, cached for the stats TTL.
    """
    return stats.homepage_stats(db, cache)
