"""Turn an editable request template into a resolved, ready-to-send request."""

from typing import List, Mapping, Optional, Tuple

from .auth import compose, merge_headers
from .errors import ValidationError
from .interpolation import interpolate
from .models import ApiRequest, AuthType, HTTPMethod, KeyValue, ResolvedRequest

# Methods that never carry a request body
BODYLESS_METHODS = {HTTPMethod.GET, HTTPMethod.HEAD}


def _resolve_pairs(pairs: List[KeyValue], variables: Mapping[str, str]) -> List[Tuple[str, str]]:
    # Names are sent as written; only values are templates
    return [
        (pair.key, interpolate(pair.value, variables))
        for pair in pairs
        if pair.enabled and pair.key.strip()
    ]


def validate_request(request: ApiRequest):
    if not request.url.strip():
        raise ValidationError("URL is required")
    if request.auth.auth_type == AuthType.API_KEY and not request.auth.api_key_name.strip():
        raise ValidationError("API key name is required")


def resolve_request(request: ApiRequest, variables: Optional[Mapping[str, str]] = None) -> ResolvedRequest:
    """Interpolate every template of ``request`` and merge in its auth.

    Raises ValidationError when the request cannot be sent at all.
    """
    validate_request(request)
    variables = variables or {}

    url = interpolate(request.url.strip(), variables)
    headers = _resolve_pairs(request.headers, variables)
    params = _resolve_pairs(request.query_params, variables)

    if request.content_type and not any(name.lower() == "content-type" for name, _ in headers):
        headers.append(("Content-Type", request.content_type))

    additions = compose(request.auth, variables)
    headers = merge_headers(headers, additions.headers)
    params.extend(additions.params)

    body = None
    if request.body and request.method not in BODYLESS_METHODS:
        body = interpolate(request.body, variables)

    return ResolvedRequest(
        source_id=request.id,
        method=request.method,
        url=url,
        headers=headers,
        params=params,
        body=body,
    )
