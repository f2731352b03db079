import re
from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .models import ModerationStatus, RATING_FIELDS

MAX_REVIEW_IMAGES = 5

Rating = Annotated[int, Field(ge=1, le=5, strict=True)]
ShortTag = Annotated[str, Field(max_length=50)]

_TAG_RE = re.compile(r"<[^>]*>")


def normalise_email(v: Any) -> Any:
    """Trim and lower-case an email before format validation."""
    if isinstance(v, str):
        v = v.strip().lower()
        if len(v) > 100:
            raise ValueError("Email must be at most 100 characters")
    return v


def strip_tags(v: str) -> str:
    """Remove HTML markup so stored text can never carry script content."""
    return _TAG_RE.sub("", v).strip()


class CamelModel(BaseModel):
    """
    Base for wire schemas: snake_case in Python, camelCase on the wire.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class StrictCamelModel(CamelModel):
    """Input schemas reject unknown keys."""
    model_config = ConfigDict(extra="forbid")


# ---------- Auth input schemas ----------

class RegisterRequest(StrictCamelModel):
    """
    Schema for password registration.

    Password rules: 8-128 characters, at least one uppercase letter, one
    digit and one symbol. ``confirm`` is optional but must match when sent.
    """
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    confirm: Optional[str] = None

    _normalise_email = field_validator("email", mode="before")(normalise_email)

    @field_validator("password")
    @classmethod
    def check_complexity(cls, v: str) -> str:
        problems = []
        if not re.search(r"[A-Z]", v):
            problems.append("Password must contain at least one uppercase letter")
        if not re.search(r"[0-9]", v):
            problems.append("Password must contain at least one number")
        if not re.search(r"[^A-Za-z0-9]", v):
            problems.append("Password must contain at least one special character")
        if problems:
            raise ValueError("; ".join(problems))
        return v

    @model_validator(mode="after")
    def check_confirm(self):
        if self.confirm is not None and self.confirm != self.password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(StrictCamelModel):
    email: EmailStr
    password: str = Field(..., max_length=128)

    _normalise_email = field_validator("email", mode="before")(normalise_email)


class SendCodeRequest(StrictCamelModel):
    email: EmailStr

    _normalise_email = field_validator("email", mode="before")(normalise_email)


class VerifyCodeRequest(StrictCamelModel):
    email: EmailStr
    code: str = Field(..., pattern=r"^\d{6}$")

    _normalise_email = field_validator("email", mode="before")(normalise_email)


class GoogleAuthRequest(BaseModel):
    """
    Either a Google ID token (``credential``) or an OAuth ``access_token``.
    """
    model_config = ConfigDict(extra="forbid")

    credential: Optional[str] = None
    access_token: Optional[str] = None

    @model_validator(mode="after")
    def require_one(self):
        if not self.credential and not self.access_token:
            raise ValueError("Either credential (ID token) or access_token is required")
        return self


class Token(BaseModel):
    token: str


# ---------- University / dorm schemas ----------

class UniversityRead(CamelModel):
    id: int
    name: str
    slug: str
    location: Optional[str] = None
    website: Optional[str] = None
    image_url: Optional[str] = None
    highlights: List[str] = []
    founded_year: Optional[int] = None
    total_students: Optional[int] = None
    acceptance_rate: Optional[float] = None


class DormCreate(StrictCamelModel):
    """
    Schema for a user-submitted dorm. The slug is derived from ``name``.
    """
    name: str = Field(..., min_length=2, max_length=100)
    university_slug: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    image_url: Optional[str] = None
    amenities: Optional[List[ShortTag]] = None
    room_types: Optional[List[ShortTag]] = None

    @field_validator("name", "university_slug", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("description")
    @classmethod
    def clean_description(cls, v: Optional[str]) -> Optional[str]:
        return strip_tags(v) if v is not None else v


class DormRead(CamelModel):
    id: int
    name: str
    slug: str
    university_slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    images: List[str] = []
    amenities: List[str] = []
    room_types: List[str] = []
    status: ModerationStatus
    submitted_by: Optional[str] = None
    created_at: Optional[datetime] = None


class DormWithStats(DormRead):
    avg_rating: float = 0
    review_count: int = 0


class DormSubmitted(CamelModel):
    message: str
    dorm: DormRead


# ---------- Review schemas ----------

class ReviewContent(StrictCamelModel):
    """
    Fields shared by review creation and review edits.

    ``year`` and ``roomType`` have historically been sent either as a
    scalar or as a list; both shapes are accepted and stored as lists.
    """
    room: Rating
    bathroom: Rating
    building: Rating
    amenities: Rating
    location: Rating
    description: str = Field(..., min_length=10, max_length=3000)
    year: Union[int, str, List[Union[int, str]]]
    room_type: Union[str, List[str]]
    would_dorm_again: Optional[bool] = None
    images: Optional[List[str]] = Field(default=None, max_length=MAX_REVIEW_IMAGES)

    @field_validator("description")
    @classmethod
    def clean_description(cls, v: str) -> str:
        v = strip_tags(v)
        if len(v) < 10:
            raise ValueError("description must be at least 10 characters")
        return v

    @field_validator("year")
    @classmethod
    def normalise_year(cls, v) -> List[int]:
        values = v if isinstance(v, list) else [v]
        years = []
        for item in values:
            if isinstance(item, str):
                item = item.strip()
                if not item.isdigit():
                    raise ValueError("year must be numeric")
                item = int(item)
            years.append(item)
        if not years:
            raise ValueError("year must not be empty")
        return years

    @field_validator("room_type")
    @classmethod
    def normalise_room_type(cls, v) -> List[str]:
        values = v if isinstance(v, list) else [v]
        values = [s.strip() for s in values if s and s.strip()]
        if not values:
            raise ValueError("roomType must not be empty")
        return values


class ReviewCreate(ReviewContent):
    university: str = Field(..., min_length=1, max_length=100)
    dorm: str = Field(..., min_length=1, max_length=100)
    file_image: Optional[str] = None

    @field_validator("university", "dorm", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class ReviewEdit(ReviewContent):
    pass


class PendingEditRead(CamelModel):
    room: int
    bathroom: int
    building: int
    amenities: int
    location: int
    description: str
    year: List[int]
    room_type: List[str]
    would_dorm_again: Optional[bool] = None
    images: List[str] = []
    submitted_at: Optional[datetime] = None


class ReviewRead(CamelModel):
    """
    Public review representation, with derived rating and vote score.
    """
    id: int
    university: Optional[str] = None
    dorm: Optional[str] = None
    room: int
    bathroom: int
    building: int
    amenities: int
    location: int
    description: str
    year: List[int] = []
    room_type: List[str] = []
    would_dorm_again: Optional[bool] = None
    images: List[str] = []
    file_image: Optional[str] = None
    user: Optional[str] = ""
    verified: bool = False
    status: ModerationStatus
    created_at: Optional[datetime] = None
    upvotes: List[str] = []
    downvotes: List[str] = []

    @computed_field(alias="overallRating")
    @property
    def overall_rating(self) -> float:
        return sum(getattr(self, f) for f in RATING_FIELDS) / len(RATING_FIELDS)

    @computed_field(alias="score")
    @property
    def score(self) -> int:
        return max(0, len(self.upvotes) - len(self.downvotes))


class ReviewDetail(ReviewRead):
    """
    Review as seen by its owner or an admin, including any pending edit.
    """
    pending_edit: Optional[PendingEditRead] = None
    has_pending_edit: bool = False


class ReviewModerated(CamelModel):
    message: str
    review: ReviewDetail


class VoteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["upvote", "downvote"]


class MessageResponse(BaseModel):
    message: str
