"""
Optional Google sign-in.

The browser completes Google's consent flow and posts the resulting ID
token to ``/api/auth/google/callback``; this module only builds the
consent URL and verifies ID tokens (signature against Google's published
keys, audience, issuer and expiry) with PyJWT.

Setup:
 1. Create OAuth 2.0 credentials (Web application) in a Google Cloud project.
 2. Add the redirect URI of the client app as an authorized redirect URI.
 3. Set GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET and GOOGLE_REDIRECT_URI.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import jwt  # PyJWT

logger = logging.getLogger("mini-social.oauth")

GOOGLE_AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_CERTS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")
SCOPES = (
    "openid",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
)


class OAuthNotConfigured(RuntimeError):
    pass


class GoogleOAuth:
    def __init__(self, client_id, client_secret, redirect_uri, jwks_client=None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._jwks_client = jwks_client

    @classmethod
    def from_config(cls, config) -> "GoogleOAuth":
        oauth = cls(
            config.get("GOOGLE_CLIENT_ID"),
            config.get("GOOGLE_CLIENT_SECRET"),
            config.get("GOOGLE_REDIRECT_URI"),
        )
        if oauth.configured:
            logger.info("Google OAuth configured")
        else:
            logger.warning("Google OAuth credentials not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET.")
        return oauth

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def jwks_client(self) -> jwt.PyJWKClient:
        if self._jwks_client is None:
            self._jwks_client = jwt.PyJWKClient(GOOGLE_CERTS_URL)
        return self._jwks_client

    def authorization_url(self) -> str:
        if not self.configured:
            raise OAuthNotConfigured("Google OAuth client not initialized")
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{GOOGLE_AUTH_ENDPOINT}?{urlencode(params)}"

    def verify_id_token(self, id_token: str) -> Optional[dict]:
        """Return the verified claims of a Google ID token, or None if invalid."""
        if not self.configured:
            raise OAuthNotConfigured("Google OAuth client not initialized")
        try:
            signing_key = self.jwks_client.get_signing_key_from_jwt(id_token)
            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.client_id,
                options={"require": ["exp", "iss", "sub", "aud"]},
            )
        except jwt.PyJWTError as exc:
            logger.warning("Google ID token verification failed: %s", exc)
            return None
        if claims.get("iss") not in GOOGLE_ISSUERS:
            logger.warning("Google ID token has unexpected issuer %r", claims.get("iss"))
            return None
        if not claims.get("email"):
            return None
        # accounts are linked by email, so it must be one Google has verified
        if claims.get("email_verified") not in (True, "true"):
            logger.warning("Google ID token for %s has an unverified email", claims.get("sub"))
            return None
        return claims
