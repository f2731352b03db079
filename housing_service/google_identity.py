from typing import Any, Dict, Optional

import httpx
import structlog

from . import config
from .errors import InvalidToken, UpstreamError

logger = structlog.get_logger(__name__)

TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"


class GoogleVerifier:
    """
    Resolves Google credentials to a profile ``{sub, email, name, picture}``.

    ID tokens are checked through the tokeninfo endpoint, including the
    ``aud`` claim against our client id; access tokens go through the
    userinfo endpoint.
    """

    def __init__(self, client_id: Optional[str] = None, timeout: float = 5.0):
        self.client_id = client_id
        self.timeout = timeout

    def _get(self, url: str, **kwargs) -> httpx.Response:
        try:
            return httpx.get(url, timeout=self.timeout, **kwargs)
        except httpx.RequestError as exc:
            logger.error("google_unreachable", url=url, error=str(exc))
            raise UpstreamError("Failed to contact Google")

    def verify_id_token(self, credential: str) -> Dict[str, Any]:
        response = self._get(TOKENINFO_URL, params={"id_token": credential})
        if response.status_code != 200:
            raise InvalidToken("Invalid Google token")
        payload = response.json()
        if self.client_id and payload.get("aud") != self.client_id:
            logger.warning("google_audience_mismatch", aud=payload.get("aud"))
            raise InvalidToken("Invalid Google token")
        return payload

    def fetch_userinfo(self, access_token: str) -> Dict[str, Any]:
        response = self._get(
            USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
        )
        if response.status_code != 200:
            raise InvalidToken("Invalid Google access token")
        return response.json()

    def resolve(
        self, credential: Optional[str] = None, access_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Return the verified Google profile.

        Raises
        ------
        InvalidToken
            If Google rejects the credential or it carries no email.
        UpstreamError
            If Google cannot be reached.
        """
        if credential:
            payload = self.verify_id_token(credential)
        else:
            payload = self.fetch_userinfo(access_token)

        if not payload.get("email"):
            raise InvalidToken("Invalid Google token")
        return {
            "sub": payload.get("sub"),
            "email": payload["email"],
            "name": payload.get("name"),
            "picture": payload.get("picture"),
        }


def get_google_verifier() -> GoogleVerifier:
    return GoogleVerifier(client_id=config.GOOGLE_CLIENT_ID)
