from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Index,
)

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; both SQLite and Postgres store it unchanged."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRole(str, PyEnum):
    """
    Enumeration of supported user roles.

    Roles
    -----
    user
        Regular account: can review, vote, edit own reviews and submit dorms.
    admin
        Moderator of reviews, review edits and dorm submissions.
    """
    USER = "user"
    ADMIN = "admin"


class ModerationStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


RATING_FIELDS = ("room", "bathroom", "building", "amenities", "location")

# Review fields an owner may change through the edit workflow
EDITABLE_REVIEW_FIELDS = RATING_FIELDS + (
    "description",
    "year",
    "room_type",
    "would_dorm_again",
    "images",
)


class University(Base):
    """
    SQLAlchemy model for a university.

    Attributes
    ----------
    slug : str
        Globally unique URL identifier; dorms and reviews reference it by value.
    highlights : list[str]
        Short marketing bullet points shown on the university page.
    """
    __tablename__ = "universities"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    location = Column(String)
    website = Column(String)
    image_url = Column(String)
    highlights = Column(JSON, nullable=False, default=list)
    founded_year = Column(Integer)
    total_students = Column(Integer)
    acceptance_rate = Column(Float)
    created_at = Column(DateTime, default=utcnow)


class Dorm(Base):
    """
    SQLAlchemy model for a residence hall.

    Seeded dorms are approved; dorms submitted by users start pending and
    are only publicly visible once an admin approves them.
    """
    __tablename__ = "dorms"
    __table_args__ = (
        UniqueConstraint("university_slug", "slug", name="uq_dorm_university_slug"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False)
    university_slug = Column(String, index=True, nullable=False)
    description = Column(Text)
    image_url = Column(Text)
    images = Column(JSON, nullable=False, default=list)
    amenities = Column(JSON, nullable=False, default=list)
    room_types = Column(JSON, nullable=False, default=list)
    status = Column(
        Enum(ModerationStatus),
        nullable=False,
        default=ModerationStatus.APPROVED,
        index=True,
    )
    submitted_by = Column(String)
    created_at = Column(DateTime, default=utcnow)


class User(Base):
    """
    SQLAlchemy model for accounts.

    ``email`` identifies the account across password, Google and
    code-based sign-in. ``password`` holds a bcrypt hash and is empty for
    accounts that never set one.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    password = Column(String, nullable=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.USER)
    google_id = Column(String, index=True)
    name = Column(String)
    picture = Column(String)
    verification_code = Column(String)
    verification_code_expires = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)


class Review(Base):
    """
    SQLAlchemy model for a dorm review.

    ``university`` and ``dorm`` are free text (the university slug and the
    dorm name), not foreign keys. ``pending_edit`` holds an owner's edit
    awaiting approval; the live columns stay authoritative until then.
    ``upvotes``/``downvotes`` are lists of user-id strings used as sets.
    """
    __tablename__ = "reviews"
    __table_args__ = (
        Index("ix_reviews_university_dorm_status", "university", "dorm", "status"),
        Index("ix_reviews_status_created", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    university = Column(String)
    dorm = Column(String)

    room = Column(Integer, nullable=False)
    bathroom = Column(Integer, nullable=False)
    building = Column(Integer, nullable=False)
    amenities = Column(Integer, nullable=False)
    location = Column(Integer, nullable=False)

    description = Column(Text, nullable=False)
    year = Column(JSON, nullable=False, default=list)
    room_type = Column(JSON, nullable=False, default=list)
    would_dorm_again = Column(Boolean, default=False)
    images = Column(JSON, nullable=False, default=list)
    file_image = Column(Text)

    user = Column(String, index=True, default="")
    verified = Column(Boolean, default=False)
    status = Column(
        Enum(ModerationStatus),
        nullable=False,
        default=ModerationStatus.APPROVED,
    )
    pending_edit = Column(JSON(none_as_null=True), nullable=True)
    upvotes = Column(JSON, nullable=False, default=list)
    downvotes = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=utcnow, index=True)

    @property
    def overall_rating(self) -> float:
        return overall_rating(self)

    @property
    def score(self) -> int:
        return max(0, len(self.upvotes or []) - len(self.downvotes or []))


def overall_rating(ratings) -> float:
    """
    Mean of the five sub-ratings. Accepts a Review or a mapping.
    """
    if isinstance(ratings, dict):
        values = [ratings[f] for f in RATING_FIELDS]
    else:
        values = [getattr(ratings, f) for f in RATING_FIELDS]
    return sum(values) / len(RATING_FIELDS)
