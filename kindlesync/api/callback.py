"""GitHub OAuth callback.

GitHub redirects the user's browser here, so every outcome is a small HTML
page telling the user whether to go back to their Kindle.
"""

from html import escape
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import HTMLResponse

from kindlesync.api.dependencies import get_orchestrator
from kindlesync.core.auth_flow import AuthOrchestrator
from kindlesync.core.exceptions import AuthFlowError, Conflict, Expired, NotFound, ProviderError
from kindlesync.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

# OAuth error codes GitHub may send back instead of a code
OAUTH_ERROR_STATUS = {
    "invalid_request": status.HTTP_400_BAD_REQUEST,
    "unauthorized_client": status.HTTP_401_UNAUTHORIZED,
    "access_denied": status.HTTP_403_FORBIDDEN,
    "unsupported_response_type": status.HTTP_400_BAD_REQUEST,
    "invalid_scope": status.HTTP_400_BAD_REQUEST,
    "server_error": status.HTTP_502_BAD_GATEWAY,
    "temporarily_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}

OAUTH_ERROR_MESSAGES = {
    "invalid_request": "The authorization request was invalid.",
    "unauthorized_client": "This application is not authorized to sign in with GitHub.",
    "access_denied": "You declined the authorization request.",
    "unsupported_response_type": "GitHub does not support this kind of request.",
    "invalid_scope": "The requested permissions are not valid.",
    "server_error": "GitHub had a problem completing the sign-in.",
    "temporarily_unavailable": "GitHub is temporarily unavailable. Please try again later.",
}

FLOW_ERROR_MESSAGES = {
    NotFound: "This sign-in link is not valid. Start again from your Kindle.",
    Expired: "This sign-in link has expired. Start again from your Kindle.",
    Conflict: "This sign-in link has already been used.",
    ProviderError: "We could not verify your GitHub account. Start again from your Kindle.",
}

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{title} - Kindle Reading Sync</title>
<style>
body {{ font-family: -apple-system, "Segoe UI", Roboto, sans-serif; background: #f4f4f8;
       display: flex; align-items: center; justify-content: center; min-height: 100vh; margin: 0; }}
.card {{ background: #fff; border-radius: 16px; box-shadow: 0 10px 40px rgba(0,0,0,.15);
         max-width: 460px; width: 100%; padding: 36px; text-align: center; }}
h1 {{ font-size: 22px; color: {color}; }}
p {{ color: #444; line-height: 1.5; }}
.avatar {{ width: 72px; height: 72px; border-radius: 50%; }}
</style>
</head>
<body>
<div class="card">
{avatar}<h1>{title}</h1>
{body}
</div>
</body>
</html>
"""


def render_page(title: str, paragraphs: list[str], success: bool = False, avatar_url: str | None = None) -> str:
    avatar = f'<img class="avatar" src="{escape(avatar_url)}" alt="">\n' if avatar_url else ""
    body = "\n".join(f"<p>{escape(p)}</p>" for p in paragraphs)
    return PAGE_TEMPLATE.format(
        title=escape(title),
        color="#2e7d32" if success else "#c62828",
        avatar=avatar,
        body=body,
    )


def error_page(title: str, message: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(render_page(title, [message]), status_code=status_code)


@router.get("/callback", response_class=HTMLResponse)
async def oauth_callback(
    orchestrator: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
):
    """Complete the GitHub sign-in started by a Kindle."""
    if error:
        logger.warning("OAuth callback error", error=error, error_description=error_description)
        return error_page(
            "Authorization Failed",
            error_description or OAUTH_ERROR_MESSAGES.get(error, "An error occurred during authorization."),
            OAUTH_ERROR_STATUS.get(error, status.HTTP_400_BAD_REQUEST),
        )

    if not code or not state:
        logger.warning("OAuth callback missing parameters")
        return error_page("Invalid Request", "Missing required parameters.", status.HTTP_400_BAD_REQUEST)

    try:
        result = await orchestrator.complete(code, state)
    except AuthFlowError as e:
        message = FLOW_ERROR_MESSAGES.get(type(e), "Failed to complete authorization.")
        return error_page("Authorization Failed", message, e.status_code)

    return HTMLResponse(
        render_page(
            "Authorization Successful",
            [
                f"Signed in as {result.user.username}.",
                f"Device {result.device.device_id} is now linked to your account.",
                "You can close this page and return to your Kindle.",
            ],
            success=True,
            avatar_url=result.user.avatar_url,
        )
    )
