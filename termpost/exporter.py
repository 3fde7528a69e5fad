"""Export requests and responses out of the session: curl commands and the clipboard."""

import shlex
import shutil
import subprocess
import sys
from typing import List, Mapping, Optional, Sequence
from urllib.parse import urlencode

import structlog

from .errors import ClipboardError
from .interpolation import interpolate
from .models import ApiKeyLocation, ApiRequest, AuthType, HTTPMethod

logger = structlog.get_logger("termpost.exporter")


def request_to_curl(request: ApiRequest, variables: Optional[Mapping[str, str]] = None) -> str:
    """Render ``request`` as a shell-ready curl command line."""
    variables = variables or {}
    parts = ["curl"]

    if request.method != HTTPMethod.GET:
        parts.extend(["-X", request.method.value])

    for header in request.headers:
        if header.enabled and header.key:
            value = interpolate(header.value, variables)
            parts.extend(["-H", shlex.quote(f"{header.key}: {value}")])

    auth = request.auth
    params = [
        (param.key, interpolate(param.value, variables))
        for param in request.query_params
        if param.enabled and param.key
    ]
    if auth.auth_type == AuthType.BEARER:
        token = interpolate(auth.bearer_token, variables)
        parts.extend(["-H", shlex.quote(f"Authorization: Bearer {token}")])
    elif auth.auth_type == AuthType.BASIC:
        user = interpolate(auth.basic_username, variables)
        password = interpolate(auth.basic_password, variables)
        parts.extend(["-u", shlex.quote(f"{user}:{password}")])
    elif auth.auth_type == AuthType.API_KEY and auth.api_key_name:
        name = interpolate(auth.api_key_name, variables)
        value = interpolate(auth.api_key_value, variables)
        if auth.api_key_location == ApiKeyLocation.HEADER:
            parts.extend(["-H", shlex.quote(f"{name}: {value}")])
        else:
            params.append((name, value))

    if request.body:
        parts.extend(["-d", shlex.quote(interpolate(request.body, variables))])

    parts.append(shlex.quote(_with_params(interpolate(request.url.strip(), variables), params)))
    return " ".join(parts)


def _with_params(url: str, params: List) -> str:
    if not params:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params, safe='{}')}"


def _clipboard_commands() -> Sequence[List[str]]:
    if sys.platform == "darwin":
        return [["pbcopy"]]
    if sys.platform.startswith("linux"):
        return [["wl-copy"], ["xclip", "-selection", "clipboard"], ["xsel", "--clipboard", "--input"]]
    return []


def copy_to_clipboard(text: str):
    """Pipe ``text`` into the first available clipboard tool."""
    commands = [cmd for cmd in _clipboard_commands() if shutil.which(cmd[0])]
    if not commands:
        raise ClipboardError("Clipboard not supported on this platform")

    last_error = None
    for cmd in commands:
        try:
            subprocess.run(cmd, input=text.encode("utf-8"), check=True, timeout=5)
            logger.debug("Copied to clipboard", tool=cmd[0], size=len(text))
            return
        except (OSError, subprocess.SubprocessError) as e:
            last_error = e
    raise ClipboardError(f"Failed to copy: {last_error}")
