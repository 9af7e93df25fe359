"""
Gmail Sync
==========

Google OAuth token storage and a read-only inbox fetch.

Tokens are refreshed lazily: an access token within 60 seconds of expiry is
exchanged for a new one before the Gmail API is called. A failed refresh is
logged and the old token is used as-is.

Usage:
    from hub.services import gmail

    result = await gmail.fetch_inbox(session, user_id, max_results=10)
    if result["success"]:
        for message in result["messages"]:
            print(message["subject"])
"""

import asyncio
import hashlib
import hmac
import logging
import time
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session

from agentkit.config import get_settings
from hub.core.models import GoogleAccount, User, utcnow
from hub.resilience import GmailError, NotAuthorizedError, require_user

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = " ".join(
    [
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/userinfo.email",
    ]
)
AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
USERINFO_ENDPOINT = "https://www.googleapis.com/oauth2/v2/userinfo"
MESSAGES_ENDPOINT = "https://gmail.googleapis.com/gmail/v1/users/me/messages"

REFRESH_BUFFER_MS = 60_000
DEFAULT_MAX_RESULTS = 15
HTTP_TIMEOUT = httpx.Timeout(30.0)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _get_account(session: Session, user_id: str) -> GoogleAccount | None:
    return session.query(GoogleAccount).filter(GoogleAccount.user_id == user_id).first()


# =============================================================================
# TOKEN STORAGE
# =============================================================================


def get_connection(session: Session, user_id: str | None) -> dict:
    if not user_id:
        return {"connected": False}
    account = _get_account(session, user_id)
    if account is None:
        return {"connected": False}
    return {"connected": True, "email": account.email, "expiryDate": account.expiry_ms}


def save_tokens(
    session: Session,
    user_id: str | None,
    access_token: str,
    email: str | None = None,
    refresh_token: str | None = None,
    scope: str | None = None,
    expiry_ms: int | None = None,
    token_type: str | None = None,
) -> None:
    """Upsert the user's Google tokens; omitted fields keep their stored values."""
    user_id = require_user(user_id)
    account = _get_account(session, user_id)

    if account is None:
        session.add(
            GoogleAccount(
                user_id=user_id,
                provider="google",
                email=email,
                access_token=access_token,
                refresh_token=refresh_token,
                scope=scope or DEFAULT_SCOPES,
                expiry_ms=expiry_ms,
                token_type=token_type,
            )
        )
    else:
        account.email = email if email is not None else account.email
        account.access_token = access_token
        account.refresh_token = refresh_token if refresh_token is not None else account.refresh_token
        account.scope = scope if scope is not None else account.scope
        account.expiry_ms = expiry_ms if expiry_ms is not None else account.expiry_ms
        account.token_type = token_type if token_type is not None else account.token_type
        account.updated_at = utcnow()
    session.flush()


def update_tokens(
    session: Session,
    user_id: str | None,
    access_token: str,
    expiry_ms: int | None = None,
    refresh_token: str | None = None,
    token_type: str | None = None,
    scope: str | None = None,
) -> None:
    user_id = require_user(user_id)
    account = _get_account(session, user_id)
    if account is None:
        raise GmailError("No Google account connected")

    account.access_token = access_token
    account.expiry_ms = expiry_ms if expiry_ms is not None else account.expiry_ms
    account.refresh_token = refresh_token if refresh_token is not None else account.refresh_token
    account.token_type = token_type if token_type is not None else account.token_type
    account.scope = scope if scope is not None else account.scope
    account.updated_at = utcnow()
    session.flush()


def update_profile(session: Session, user_id: str | None, email: str | None = None) -> None:
    user_id = require_user(user_id)
    account = _get_account(session, user_id)
    if account is None:
        return
    if email is not None:
        account.email = email
    account.updated_at = utcnow()
    session.flush()


# =============================================================================
# OAUTH
# =============================================================================


STATE_TTL_SECONDS = 600


def _state_secret() -> str:
    settings = get_settings()
    secret = settings.OAUTH_STATE_SECRET or settings.GOOGLE_CLIENT_SECRET
    if not secret:
        raise GmailError("Google OAuth is not configured")
    return secret


def _state_signature(user_id: str, expires_at: int) -> str:
    return hmac.new(_state_secret().encode(), f"{user_id}:{expires_at}".encode(), hashlib.sha256).hexdigest()


def sign_oauth_state(user_id: str, now: float | None = None) -> str:
    """OAuth ``state`` binding the consent flow to ``user_id`` for ten minutes."""
    expires_at = int((now if now is not None else time.time()) + STATE_TTL_SECONDS)
    return f"{user_id}:{expires_at}:{_state_signature(user_id, expires_at)}"


def verify_oauth_state(state: str, now: float | None = None) -> str:
    """Return the user id a state was issued to; NotAuthorizedError if forged or expired."""
    parts = state.rsplit(":", 2)
    if len(parts) != 3 or not parts[1].isdigit():
        raise NotAuthorizedError("Invalid OAuth state")
    user_id, expires_at, signature = parts[0], int(parts[1]), parts[2]
    if not hmac.compare_digest(signature, _state_signature(user_id, expires_at)):
        raise NotAuthorizedError("Invalid OAuth state")
    if expires_at < (now if now is not None else time.time()):
        raise NotAuthorizedError("OAuth state expired")
    return user_id


async def complete_authorization(
    session: Session,
    signed_in_user: str | None,
    state: str,
    code: str,
    http_client: httpx.AsyncClient | None = None,
):
    """
    Verify the callback state and exchange the code for the user it names.

    When the callback request is itself authenticated, the signed-in user must
    match the state. The user must already exist.
    """
    user_id = verify_oauth_state(state)
    if signed_in_user is not None and signed_in_user != user_id:
        raise NotAuthorizedError("OAuth state does not match the signed-in user")
    if session.get(User, user_id) is None:
        raise NotAuthorizedError("Invalid OAuth state")
    return await exchange_code(session, user_id, code, http_client=http_client)


def build_authorization_url(user_id: str | None) -> str:
    """Consent screen URL for connecting a Google account, with a signed state."""
    user_id = require_user(user_id)
    settings = get_settings()
    if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_REDIRECT_URI:
        raise GmailError("Google OAuth is not configured")
    state = sign_oauth_state(user_id)
    params = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "redirect_uri": settings.GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": DEFAULT_SCOPES,
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
        "state": state,
    }
    return f"{AUTH_ENDPOINT}?{urlencode(params)}"


async def exchange_code(
    session: Session,
    user_id: str | None,
    code: str,
    http_client: httpx.AsyncClient | None = None,
) -> dict:
    """Trade an authorization code for tokens, store them and look up the account email."""
    user_id = require_user(user_id)
    settings = get_settings()
    if not (settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET and settings.GOOGLE_REDIRECT_URI):
        raise GmailError("Google OAuth is not configured")

    client = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)
    try:
        response = await client.post(
            TOKEN_ENDPOINT,
            data={
                "code": code,
                "client_id": settings.GOOGLE_CLIENT_ID,
                "client_secret": settings.GOOGLE_CLIENT_SECRET,
                "redirect_uri": settings.GOOGLE_REDIRECT_URI,
                "grant_type": "authorization_code",
            },
        )
        if not response.is_success:
            raise GmailError(f"Token exchange failed: {response.text}")
        tokens = response.json()
        if not tokens.get("access_token"):
            raise GmailError("No access token in response")

        email = None
        profile = await client.get(
            USERINFO_ENDPOINT, headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        if profile.is_success:
            email = profile.json().get("email")
    finally:
        if http_client is None:
            await client.aclose()

    expires_in = tokens.get("expires_in")
    save_tokens(
        session,
        user_id,
        access_token=tokens["access_token"],
        email=email,
        refresh_token=tokens.get("refresh_token"),
        scope=tokens.get("scope"),
        expiry_ms=_now_ms() + int(expires_in) * 1000 if expires_in else None,
        token_type=tokens.get("token_type"),
    )
    logger.info(f"Connected Google account for user {user_id}")
    return get_connection(session, user_id)


async def refresh_access_token_if_needed(
    session: Session,
    account: GoogleAccount,
    http_client: httpx.AsyncClient,
) -> str:
    """Return a usable access token, refreshing it when it expires within a minute."""
    expires_soon = account.expiry_ms is not None and account.expiry_ms - _now_ms() < REFRESH_BUFFER_MS
    if not expires_soon or not account.refresh_token:
        return account.access_token

    settings = get_settings()
    if not (settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET and settings.GOOGLE_REDIRECT_URI):
        logger.warning("Missing Google OAuth settings; cannot refresh token")
        return account.access_token

    try:
        response = await http_client.post(
            TOKEN_ENDPOINT,
            data={
                "client_id": settings.GOOGLE_CLIENT_ID,
                "client_secret": settings.GOOGLE_CLIENT_SECRET,
                "grant_type": "refresh_token",
                "refresh_token": account.refresh_token,
            },
        )
    except httpx.HTTPError as e:
        logger.warning(f"Failed to refresh token: {e}")
        return account.access_token

    if not response.is_success:
        logger.warning(f"Failed to refresh token: {response.text}")
        return account.access_token

    data = response.json()
    expires_in = data.get("expires_in")
    update_tokens(
        session,
        account.user_id,
        access_token=data["access_token"],
        expiry_ms=_now_ms() + int(expires_in) * 1000 if expires_in else None,
        token_type=data.get("token_type"),
        scope=data.get("scope"),
    )
    logger.info(f"Refreshed Google access token for user {account.user_id}")
    return data["access_token"]


# =============================================================================
# INBOX
# =============================================================================


def _header(headers: list[dict], name: str) -> str | None:
    for header in headers:
        if header.get("name", "").lower() == name.lower():
            return header.get("value")
    return None


async def _fetch_message(client: httpx.AsyncClient, token: str, ref: dict) -> dict:
    try:
        response = await client.get(
            f"{MESSAGES_ENDPOINT}/{ref['id']}",
            params=[
                ("format", "metadata"),
                ("metadataHeaders", "Subject"),
                ("metadataHeaders", "From"),
                ("metadataHeaders", "Date"),
            ],
            headers={"Authorization": f"Bearer {token}"},
        )
    except httpx.HTTPError as e:
        logger.warning(f"Failed to fetch message {ref['id']}: {e}")
        return {"id": ref["id"], "threadId": ref.get("threadId")}

    if not response.is_success:
        return {"id": ref["id"], "threadId": ref.get("threadId")}

    message = response.json()
    headers = (message.get("payload") or {}).get("headers") or []
    return {
        "id": message.get("id", ref["id"]),
        "threadId": message.get("threadId"),
        "snippet": message.get("snippet"),
        "subject": _header(headers, "Subject"),
        "from": _header(headers, "From"),
        "date": _header(headers, "Date"),
    }


async def fetch_inbox(
    session: Session,
    user_id: str | None,
    max_results: int | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> dict:
    """Latest non-promotional inbox messages with subject, sender and date."""
    if not user_id:
        return {"success": False, "error": "Not authenticated"}
    account = _get_account(session, user_id)
    if account is None:
        return {"success": False, "error": "No Google account connected"}

    client = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)
    try:
        token = await refresh_access_token_if_needed(session, account, client)

        listing = await client.get(
            MESSAGES_ENDPOINT,
            params={"maxResults": str(max_results or DEFAULT_MAX_RESULTS), "q": "-category:promotions"},
            headers={"Authorization": f"Bearer {token}"},
        )
        if not listing.is_success:
            return {"success": False, "error": f"Failed to list messages: {listing.text}"}

        refs = listing.json().get("messages") or []
        messages = await asyncio.gather(*(_fetch_message(client, token, ref) for ref in refs))
    except httpx.HTTPError as e:
        logger.error(f"Gmail inbox fetch failed for user {user_id}: {e}")
        return {"success": False, "error": str(e)}
    finally:
        if http_client is None:
            await client.aclose()

    return {"success": True, "messages": list(messages)}
