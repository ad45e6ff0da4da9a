"""Google OAuth 2.0 sign-in (authorization-code flow) over aiohttp"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import aiohttp

from config import Config

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


class GoogleOAuthError(Exception):
    """Google sign-in could not be completed"""
    pass


@dataclass
class GoogleProfile:
    google_id: str
    email: str
    first_name: str
    last_name: str
    picture: Optional[str] = None


class GoogleOAuthClient:
    """Builds the consent URL and turns an authorization code into a profile"""

    def __init__(self, client_id: Optional[str] = None, client_secret: Optional[str] = None,
                 callback_url: Optional[str] = None):
        self.client_id = client_id or Config.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or Config.GOOGLE_CLIENT_SECRET
        self.callback_url = callback_url or Config.GOOGLE_CALLBACK_URL

    def is_available(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_url(self) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.callback_url,
            "response_type": "code",
            "scope": "profile email",
            "access_type": "online",
            "prompt": "select_account",
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def fetch_profile(self, code: str) -> GoogleProfile:
        if not self.is_available():
            raise GoogleOAuthError("Google sign-in is not configured")

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=15)) as session:
                async with session.post(TOKEN_URL, data={
                    "code": code,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": self.callback_url,
                    "grant_type": "authorization_code",
                }) as response:
                    token_data = await response.json(content_type=None)
                    if response.status != 200 or "access_token" not in (token_data or {}):
                        logger.error(f"Google token exchange failed: HTTP {response.status}: {token_data}")
                        raise GoogleOAuthError("Could not exchange authorization code")

                async with session.get(
                    USERINFO_URL,
                    headers={"Authorization": f"Bearer {token_data['access_token']}"},
                ) as response:
                    info = await response.json(content_type=None)
                    if response.status != 200:
                        logger.error(f"Google userinfo failed: HTTP {response.status}")
                        raise GoogleOAuthError("Could not load Google profile")
        except aiohttp.ClientError as e:
            logger.error(f"Network error talking to Google: {e}")
            raise GoogleOAuthError(f"Network error: {e}")

        email = info.get("email")
        if not email:
            raise GoogleOAuthError("Google did not return an email address")

        display_name = info.get("name") or ""
        return GoogleProfile(
            google_id=str(info.get("sub")),
            email=email.lower(),
            first_name=info.get("given_name") or (display_name.split(" ")[0] if display_name else "Usuario"),
            last_name=info.get("family_name") or " ".join(display_name.split(" ")[1:]),
            picture=info.get("picture"),
        )
