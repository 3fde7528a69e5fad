"""Authentication header and query-parameter composition."""

import base64
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple

from .interpolation import interpolate
from .models import ApiKeyLocation, AuthConfig, AuthType


@dataclass
class AuthAdditions:
    headers: List[Tuple[str, str]] = field(default_factory=list)
    params: List[Tuple[str, str]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.headers and not self.params


def basic_credentials(username: str, password: str) -> str:
    raw = f"{username}:{password}".encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def compose(auth: AuthConfig, variables: Optional[Mapping[str, str]]) -> AuthAdditions:
    """Build the headers/params an auth config adds to a request.

    Auth fields are interpolated before they are encoded, so a token such as
    ``{{token}}`` resolves against the active environment first.
    """
    additions = AuthAdditions()

    if auth.auth_type == AuthType.BEARER:
        token = interpolate(auth.bearer_token, variables)
        additions.headers.append(("Authorization", f"Bearer {token}"))

    elif auth.auth_type == AuthType.BASIC:
        username = interpolate(auth.basic_username, variables)
        password = interpolate(auth.basic_password, variables)
        additions.headers.append(("Authorization", f"Basic {basic_credentials(username, password)}"))

    elif auth.auth_type == AuthType.API_KEY:
        name = interpolate(auth.api_key_name, variables)
        value = interpolate(auth.api_key_value, variables)
        if auth.api_key_location == ApiKeyLocation.QUERY:
            additions.params.append((name, value))
        else:
            additions.headers.append((name, value))

    return additions


def merge_headers(
    user_headers: List[Tuple[str, str]], auth_headers: List[Tuple[str, str]]
) -> List[Tuple[str, str]]:
    """Append auth headers, dropping user headers with the same name.

    Names compare case-insensitively; auth is applied last so it wins.
    """
    overridden = {name.lower() for name, _ in auth_headers}
    merged = [(name, value) for name, value in user_headers if name.lower() not in overridden]
    merged.extend(auth_headers)
    return merged
