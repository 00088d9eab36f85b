"""Google OAuth 2.0 authorization-code flow."""

import logging
from urllib.parse import urlencode

import httpx

from backend.core import config

logger = logging.getLogger(__name__)


class OAuthError(Exception):
    pass


def build_authorize_url(state: str) -> str:
    if not config.GOOGLE_OAUTH_CLIENT_ID:
        raise OAuthError('Google sign-in is not configured.')

    query = urlencode(
        {
            'client_id': config.GOOGLE_OAUTH_CLIENT_ID,
            'redirect_uri': config.GOOGLE_OAUTH_REDIRECT_URL,
            'response_type': 'code',
            'scope': 'openid email profile',
            'state': state,
            'prompt': 'select_account',
        }
    )
    return f'{config.GOOGLE_OAUTH_AUTHORIZE_URL}?{query}'


def fetch_google_identity(code: str, transport: httpx.BaseTransport | None = None) -> dict:
    """Exchange ``code`` for tokens and return ``{'subject', 'email', 'name'}``."""
    try:
        with httpx.Client(timeout=10.0, transport=transport) as client:
            token_response = client.post(
                config.GOOGLE_OAUTH_TOKEN_URL,
                data={
                    'code': code,
                    'client_id': config.GOOGLE_OAUTH_CLIENT_ID,
                    'client_secret': config.GOOGLE_OAUTH_CLIENT_SECRET,
                    'redirect_uri': config.GOOGLE_OAUTH_REDIRECT_URL,
                    'grant_type': 'authorization_code',
                },
            )
            if token_response.status_code >= 400:
                logger.warning('Google token exchange failed: %s', token_response.text[:200])
                raise OAuthError('Could not exchange authorization code.')

            access_token = token_response.json().get('access_token')
            if not access_token:
                raise OAuthError('Google did not return an access token.')

            userinfo_response = client.get(
                config.GOOGLE_OAUTH_USERINFO_URL,
                headers={'Authorization': f'Bearer {access_token}'},
            )
    except httpx.HTTPError as exc:
        raise OAuthError('Google sign-in is unreachable.') from exc

    if userinfo_response.status_code >= 400:
        raise OAuthError('Could not load Google profile.')

    userinfo = userinfo_response.json()
    email = (userinfo.get('email') or '').strip().lower()
    if not email or not userinfo.get('sub'):
        raise OAuthError('Google profile is missing an email address.')

    return {'subject': userinfo['sub'], 'email': email, 'name': userinfo.get('name')}
