import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# ❗ must run before housing_service.config is imported
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ACCESS_TOKEN_SECRET"] = "test-access-token-secret"
os.environ["ADMIN_EMAILS"] = "boss@example.com"
os.environ["ENVIRONMENT"] = "test"
for name in ("AWS_BUCKET_NAME", "EMAIL_USER", "EMAIL_PASS", "REDIS_URL", "GOOGLE_CLIENT_ID"):
    os.environ.pop(name, None)
