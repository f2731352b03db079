import cProfile

from fastapi.testclient import TestClient

from housing_service.main import app
from housing_service.database import Base, SessionLocal, engine
from housing_service import models, stats
from housing_service.models import ModerationStatus

client = TestClient(app)


def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def seed_reviews(universities: int = 20, dorms_per_university: int = 10, reviews_per_dorm: int = 15):
    """
    Fill the database with approved dorms and reviews to stress the aggregations.
    """
    db = SessionLocal()
    try:
        for u in range(universities):
            slug = f"university-{u}"
            db.add(models.University(name=f"University {u}", slug=slug))
            for d in range(dorms_per_university):
                name = f"Hall {d}"
                db.add(models.Dorm(name=name, slug=f"hall-{d}", university_slug=slug))
                for r in range(reviews_per_dorm):
                    rating = 1 + (u + d + r) % 5
                    db.add(
                        models.Review(
                            university=slug,
                            dorm=name,
                            room=rating,
                            bathroom=rating,
                            building=rating,
                            amenities=rating,
                            location=rating,
                            description="Profiling review text",
                            year=[2024],
                            room_type=["Single"],
                            status=ModerationStatus.APPROVED,
                        )
                    )
        db.commit()
    finally:
        db.close()


def scenario_stats():
    """
    Recompute every aggregate directly, then hit the cached endpoints.
    """
    db = SessionLocal()
    try:
        for _ in range(10):
            stats.compute_homepage_stats(db)
            stats.compute_admin_stats(db)
            stats.compute_university_dorm_stats(db, "university-0")
    finally:
        db.close()

    for _ in range(50):
        r = client.get("/api/stats/homepage")
        r.raise_for_status()


def main():
    reset_db()
    seed_reviews()
    app.state.stats_cache.clear()
    scenario_stats()


if __name__ == "__main__":
    # run cProfile and sort by cumulative time
    cProfile.run("main()", sort="cumtime")
