"""GitHub OAuth exchanges.

Two outbound calls, both with a bounded timeout and no retries: an
authorization code is single-use, so a failed exchange is final for that
sign-in attempt.
"""

from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode

import httpx

from kindlesync.config import Settings, get_settings
from kindlesync.core.exceptions import ProviderError
from kindlesync.core.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "Kindle-Reading-Sync"


@dataclass(frozen=True)
class ProviderProfile:
    """The subset of a GitHub profile we keep."""
    external_id: str
    display_name: str
    avatar_url: str | None = None


class GitHubClient:
    """GitHub OAuth client.

    Holds no per-user state. An ``httpx.AsyncClient`` can be injected
    (tests pass one backed by ``httpx.MockTransport``); otherwise a
    short-lived client is opened per call.
    """

    def __init__(self, settings: Settings | None = None, http_client: httpx.AsyncClient | None = None):
        self.settings = settings or get_settings()
        self._http_client = http_client

    def build_authorize_url(self, state: str) -> str:
        """URL the user opens on their phone or PC to sign in."""
        params = {
            "client_id": self.settings.github_client_id,
            "redirect_uri": self.settings.redirect_uri,
            "scope": self.settings.github_scope,
            "state": state,
            "response_type": "code",
        }
        return f"{self.settings.github_authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> str:
        """Exchange an authorization code for a GitHub access token."""
        response = await self._request(
            "POST",
            self.settings.github_token_url,
            data={
                "client_id": self.settings.github_client_id,
                "client_secret": self.settings.github_client_secret,
                "code": code,
                "redirect_uri": self.settings.redirect_uri,
            },
            headers={"Accept": "application/json"},
        )

        content_type = response.headers.get("content-type", "")
        if "application/x-www-form-urlencoded" in content_type:
            payload = dict(parse_qsl(response.text))
        else:
            payload = self._parse_json(response)

        # GitHub reports bad codes with a 200 and an error field
        if payload.get("error"):
            logger.warning(
                "GitHub rejected authorization code",
                error=payload.get("error"),
                error_description=payload.get("error_description"),
            )
            raise ProviderError(
                payload.get("error_description") or f"GitHub rejected the code: {payload['error']}"
            )

        access_token = payload.get("access_token")
        if not access_token or not isinstance(access_token, str):
            logger.error("No access token in GitHub response")
            raise ProviderError("No access token in GitHub response")

        return access_token

    async def fetch_profile(self, access_token: str) -> ProviderProfile:
        """Fetch the signed-in user's GitHub profile."""
        response = await self._request(
            "GET",
            self.settings.github_user_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github+json",
            },
        )

        payload = self._parse_json(response)
        github_id = payload.get("id")
        if github_id is None or isinstance(github_id, (bool, dict, list)):
            logger.error("Invalid user info response from GitHub")
            raise ProviderError("GitHub profile has no user id")

        return ProviderProfile(
            external_id=str(github_id),
            display_name=str(payload.get("login") or ""),
            avatar_url=payload.get("avatar_url"),
        )

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {"User-Agent": USER_AGENT, **kwargs.pop("headers", {})}
        timeout = httpx.Timeout(self.settings.provider_timeout)

        try:
            if self._http_client is not None:
                response = await self._http_client.request(
                    method, url, headers=headers, timeout=timeout, **kwargs
                )
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("GitHub request timed out", url=url, error=str(e))
            raise ProviderError("GitHub did not respond in time") from e
        except httpx.HTTPError as e:
            logger.error("GitHub request failed", url=url, error=str(e))
            raise ProviderError("Could not reach GitHub") from e

        if not response.is_success:
            logger.error("GitHub returned an error status", url=url, status_code=response.status_code)
            raise ProviderError(
                f"GitHub returned HTTP {response.status_code}",
                provider_status=response.status_code,
            )

        return response

    @staticmethod
    def _parse_json(response: httpx.Response) -> dict:
        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError("GitHub returned a malformed response") from e
        if not isinstance(payload, dict):
            raise ProviderError("GitHub returned a malformed response")
        return payload
