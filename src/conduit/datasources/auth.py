"""Outbound authentication header strategy.

Maps a (decrypted) AuthConfig to the HTTP headers a connector sends. Pure:
no I/O, no logging of values. Missing secret fields yield no header rather
than an error; the remote API decides how to answer.

OAuth2 sources send an already-issued access token as a Bearer header; no
token exchange is performed here.
"""

from __future__ import annotations

import base64

from conduit.datasources.models import (
    ApiKeyAuth,
    AuthConfig,
    BasicAuth,
    BearerAuth,
    CustomHeaderAuth,
    OAuth2Auth,
)

DEFAULT_API_KEY_HEADER = "X-API-Key"


def get_auth_headers(auth: AuthConfig) -> dict[str, str]:
    """Return the headers for an auth configuration.

    The API key prefix is prepended verbatim, so a prefix such as ``"Token "``
    must carry its own separator.

    Args:
        auth: Auth configuration holding plaintext credentials.

    Returns:
        Header name to value mapping (possibly empty).
    """
    match auth:
        case ApiKeyAuth(api_key=api_key, api_key_header=header, api_key_prefix=prefix):
            if not api_key:
                return {}
            return {header or DEFAULT_API_KEY_HEADER: f"{prefix or ''}{api_key}"}
        case BasicAuth(username=username, password=password):
            if not username or not password:
                return {}
            encoded = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
            return {"Authorization": f"Basic {encoded}"}
        case BearerAuth(token=token) | OAuth2Auth(token=token):
            if not token:
                return {}
            return {"Authorization": f"Bearer {token}"}
        case CustomHeaderAuth(custom_headers=custom_headers):
            return dict(custom_headers)
        case _:
            return {}
