"""Bucket key derivation from inbound requests."""

import hashlib

from starlette.requests import Request

from checkpoint.app.algorithms.models import AppliedField, FieldKind, Scope
from checkpoint.app.exceptions import KeyResolutionError

# Identity used when every caller shares one bucket
SHARED_IDENTITY = "*"

# Longer values are rejected rather than hashed
MAX_FIELD_VALUE_LENGTH = 512


def _field_value(request: Request, field: AppliedField) -> str:
    if field.kind is FieldKind.NONE:
        return SHARED_IDENTITY

    if field.kind is FieldKind.HEADER:
        value = request.headers.get(field.name)
    else:
        value = request.query_params.get(field.name)

    value = value.strip() if value is not None else ""
    if not value:
        raise KeyResolutionError(str(field))
    if len(value) > MAX_FIELD_VALUE_LENGTH:
        raise KeyResolutionError(
            str(field),
            f"Value of '{field}' too long (max {MAX_FIELD_VALUE_LENGTH} characters)",
        )
    return value


def resolve_key(
    request: Request,
    field: AppliedField,
    scope: Scope,
    prefix: str = "checkpoint:token_bucket",
) -> str:
    """Derive the bucket key for a request.

    The identity is hashed using SHA-256 so raw API keys or client values
    are never stored in the counter store.

    Args:
        request: Inbound request
        field: Request attribute identifying the caller
        scope: ENDPOINT adds method and path to the identity, API does not
        prefix: Key namespace

    Returns:
        Key string of the form ``{prefix}:{scope}:{digest}``

    Raises:
        KeyResolutionError: If the request lacks the attribute
    """
    identity = _field_value(request, field)
    if scope is Scope.ENDPOINT:
        identity = f"{identity}|{request.method} {request.url.path}"

    # 32 hex chars (128 bits) for collision resistance
    digest = hashlib.sha256(identity.encode()).hexdigest()[:32]
    return f"{prefix}:{scope.value}:{digest}"
