import os
import sys
from datetime import datetime, timedelta, timezone

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from housing_service.main import app
from housing_service import config
from housing_service.database import Base, engine
from housing_service.models import overall_rating
from housing_service.moderation import apply_vote

client = TestClient(app)


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


def make_token(user_id: int, email: str, role: str = "user") -> str:
    payload = {
        "userId": user_id,
        "name": email,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=30),
    }
    return jwt.encode(payload, config.ACCESS_TOKEN_SECRET, algorithm=config.ALGORITHM)


def auth(user_id: int, email: str, role: str = "user") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, email, role)}"}


def admin() -> dict:
    return auth(999, "admin@example.com", role="admin")


def review_body(**overrides) -> dict:
    body = {
        "university": "york-university",
        "dorm": "Founders Residence",
        "room": 4,
        "bathroom": 4,
        "building": 4,
        "amenities": 4,
        "location": 4,
        "description": "Quiet floors and friendly dons.",
        "year": 2023,
        "roomType": "Single",
        "wouldDormAgain": True,
    }
    body.update(overrides)
    return body


def edit_body(**overrides) -> dict:
    body = review_body(**overrides)
    del body["university"], body["dorm"]
    return body


def submit(headers=None, **overrides) -> dict:
    res = client.post("/api/reviews", json=review_body(**overrides), headers=headers or {})
    assert res.status_code == 201, res.text
    return res.json()


def approve(review_id: int):
    res = client.patch(f"/api/admin/reviews/{review_id}/approve", headers=admin())
    assert res.status_code == 200
    return res.json()


# ---------- submission & visibility ----------

def test_review_visible_only_after_approval():
    created = submit(headers=auth(1, "alice@example.com"))
    assert created["status"] == "pending"

    res = client.get("/api/reviews", params={"university": "york-university"})
    assert res.status_code == 200
    assert res.json() == []

    approve(created["id"])

    res = client.get("/api/reviews", params={"university": "york-university"})
    reviews = res.json()
    assert len(reviews) == 1
    assert reviews[0]["dorm"] == "Founders Residence"
    assert reviews[0]["overallRating"] == 4.0
    assert reviews[0]["status"] == "approved"


def test_anonymous_review_is_unverified():
    created = submit()
    assert created["verified"] is False
    assert created["user"] == ""


def test_authenticated_review_is_verified():
    created = submit(headers=auth(1, "alice@example.com"))
    assert created["verified"] is True
    assert created["user"] == "alice@example.com"


def test_invalid_token_on_create_is_treated_as_anonymous():
    created = submit(headers={"Authorization": "Bearer not-a-jwt"})
    assert created["verified"] is False
    assert created["user"] == ""


def test_scalar_year_and_room_type_are_normalised():
    created = submit(year="2022", roomType="Double")
    assert created["year"] == [2022]
    assert created["roomType"] == ["Double"]

    created = submit(year=[2021, "2022"], roomType=["Single", "Suite"])
    assert created["year"] == [2021, 2022]
    assert created["roomType"] == ["Single", "Suite"]


def test_description_html_is_stripped():
    created = submit(description="<b>Great</b> place<script>x</script> to live")
    assert "<" not in created["description"]
    assert created["description"].startswith("Great place")


def test_list_filters_and_pagination():
    ids = [submit(dorm="Founders Residence")["id"] for _ in range(3)]
    ids.append(submit(dorm="Vanier Residence")["id"])
    for review_id in ids:
        approve(review_id)

    res = client.get("/api/reviews", params={"dorm": "Founders Residence"})
    assert len(res.json()) == 3

    res = client.get("/api/reviews", params={"limit": 2})
    assert len(res.json()) == 2

    res = client.get("/api/reviews", params={"limit": 2, "skip": 3})
    assert len(res.json()) == 1


def test_list_limit_capped_at_100():
    res = client.get("/api/reviews", params={"limit": 101})
    assert res.status_code == 400


# ---------- validation ----------

@pytest.mark.parametrize(
    "overrides",
    [
        {"room": 6},
        {"bathroom": 0},
        {"building": "4"},
        {"location": 3.5},
        {"description": "short"},
        {"description": "<p>tiny</p>"},
        {"year": "next year"},
        {"roomType": []},
        {"images": ["a.jpg"] * 6},
        {"unexpected": True},
    ],
)
def test_invalid_review_rejected(overrides):
    res = client.post("/api/reviews", json=review_body(**overrides))
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "Validation failed"
    assert body["errors"]


def test_validation_lists_every_failing_field():
    res = client.post("/api/reviews", json=review_body(room=9, bathroom=0))
    paths = {tuple(e["path"]) for e in res.json()["errors"]}
    assert ("room",) in paths
    assert ("bathroom",) in paths


def test_svg_upload_refused():
    svg = "data:image/svg+xml;base64,PHN2Zz48L3N2Zz4="
    res = client.post("/api/reviews", json=review_body(fileImage=svg))
    assert res.status_code == 400
    assert "not allowed" in res.json()["message"]


def test_plain_image_urls_pass_through():
    created = submit(images=["https://cdn.example.com/a.jpg"])
    assert created["images"] == ["https://cdn.example.com/a.jpg"]


# ---------- edits ----------

def test_edit_pending_review_applies_directly():
    owner = auth(1, "alice@example.com")
    created = submit(headers=owner)

    res = client.put(
        f"/api/reviews/{created['id']}",
        json=edit_body(room=2, description="Changed my mind about it."),
        headers=owner,
    )
    assert res.status_code == 200
    data = res.json()
    assert data["room"] == 2
    assert data["hasPendingEdit"] is False
    assert data["pendingEdit"] is None


def test_edit_approved_review_is_held_for_moderation():
    owner = auth(1, "alice@example.com")
    created = submit(headers=owner)
    approve(created["id"])

    res = client.put(
        f"/api/reviews/{created['id']}",
        json=edit_body(room=1, description="Heating broke all winter."),
        headers=owner,
    )
    assert res.status_code == 200
    data = res.json()
    assert data["room"] == 4
    assert data["hasPendingEdit"] is True
    assert data["pendingEdit"]["room"] == 1

    # public view unchanged
    public = client.get("/api/reviews").json()
    assert public[0]["room"] == 4
    assert public[0]["description"] == "Quiet floors and friendly dons."

    # owner sees the edit overlaid
    mine = client.get("/api/reviews/user", headers=owner).json()
    assert mine[0]["room"] == 1
    assert mine[0]["description"] == "Heating broke all winter."
    assert mine[0]["hasPendingEdit"] is True


def test_edit_by_non_owner_forbidden():
    created = submit(headers=auth(1, "alice@example.com"))
    res = client.put(
        f"/api/reviews/{created['id']}",
        json=edit_body(),
        headers=auth(2, "mallory@example.com"),
    )
    assert res.status_code == 403


def test_edit_anonymous_review_forbidden():
    created = submit()
    res = client.put(
        f"/api/reviews/{created['id']}", json=edit_body(), headers=auth(2, "bob@example.com")
    )
    assert res.status_code == 403


def test_edit_declined_review_rejected():
    owner = auth(1, "alice@example.com")
    created = submit(headers=owner)
    client.patch(f"/api/admin/reviews/{created['id']}/decline", headers=admin())

    res = client.put(f"/api/reviews/{created['id']}", json=edit_body(), headers=owner)
    assert res.status_code == 400


def test_edit_unknown_review_is_404():
    res = client.put("/api/reviews/12345", json=edit_body(), headers=auth(1, "a@example.com"))
    assert res.status_code == 404


def test_user_reviews_include_every_status():
    owner = auth(1, "alice@example.com")
    first = submit(headers=owner)
    second = submit(headers=owner)
    submit(headers=auth(2, "bob@example.com"))
    approve(first["id"])
    client.patch(f"/api/admin/reviews/{second['id']}/decline", headers=admin())

    mine = client.get("/api/reviews/user", headers=owner).json()
    assert {r["status"] for r in mine} == {"approved", "declined"}


# ---------- votes ----------

def test_vote_toggle_and_move():
    created = submit()
    approve(created["id"])
    voter = auth(7, "voter@example.com")
    url = f"/api/reviews/{created['id']}/vote"

    res = client.post(url, json={"type": "upvote"}, headers=voter)
    assert res.status_code == 200
    assert res.json()["upvotes"] == ["7"]
    assert res.json()["score"] == 1

    # opposite vote moves the voter
    res = client.post(url, json={"type": "downvote"}, headers=voter)
    assert res.json()["upvotes"] == []
    assert res.json()["downvotes"] == ["7"]
    assert res.json()["score"] == 0

    # same vote again toggles off
    res = client.post(url, json={"type": "downvote"}, headers=voter)
    assert res.json()["downvotes"] == []


def test_vote_requires_auth():
    created = submit()
    res = client.post(f"/api/reviews/{created['id']}/vote", json={"type": "upvote"})
    assert res.status_code == 401


def test_vote_on_hidden_review_is_404():
    voter = auth(7, "voter@example.com")
    pending = submit()
    res = client.post(
        f"/api/reviews/{pending['id']}/vote", json={"type": "upvote"}, headers=voter
    )
    assert res.status_code == 404

    declined = submit()
    client.patch(f"/api/admin/reviews/{declined['id']}/decline", headers=admin())
    res = client.post(
        f"/api/reviews/{declined['id']}/vote", json={"type": "downvote"}, headers=voter
    )
    assert res.status_code == 404

    # the hidden review was not touched
    all_reviews = client.get("/api/admin/reviews/all", headers=admin()).json()
    assert all(r["upvotes"] == [] and r["downvotes"] == [] for r in all_reviews)


def test_vote_type_validated():
    created = submit()
    res = client.post(
        f"/api/reviews/{created['id']}/vote",
        json={"type": "sideways"},
        headers=auth(7, "voter@example.com"),
    )
    assert res.status_code == 400


def test_apply_vote_never_in_both_sets():
    up, down = [], []
    for voter, kind in [("a", "upvote"), ("b", "downvote"), ("a", "downvote"), ("b", "downvote")]:
        up, down = apply_vote(up, down, voter, kind)
        assert not set(up) & set(down)
    assert up == []
    assert down == ["a"]


def test_upvote_twice_toggles_off():
    created = submit()
    approve(created["id"])
    voter = auth(7, "voter@example.com")
    url = f"/api/reviews/{created['id']}/vote"
    client.post(url, json={"type": "upvote"}, headers=voter)
    res = client.post(url, json={"type": "upvote"}, headers=voter)
    assert res.json()["upvotes"] == []
    assert res.json()["score"] == 0


@pytest.mark.parametrize(
    "ratings, expected",
    [((5, 5, 5, 5, 5), 5.0), ((1, 2, 3, 4, 5), 3.0)],
)
def test_overall_rating_is_mean_of_sub_ratings(ratings, expected):
    fields = dict(zip(("room", "bathroom", "building", "amenities", "location"), ratings))
    assert overall_rating(fields) == expected

    created = submit(**fields)
    assert created["overallRating"] == expected


def test_scenario_filter_by_university_and_dorm():
    created = submit(description="Twenty chars of text")
    params = {"university": "york-university", "dorm": "Founders Residence"}
    assert created["status"] == "pending"
    assert client.get("/api/reviews", params=params).json() == []

    approve(created["id"])
    (listed,) = client.get("/api/reviews", params=params).json()
    assert listed["overallRating"] == 4.0
