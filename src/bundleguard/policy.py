"""Built-in Content-Security-Policy definitions.

This module is the single source of truth for the directives BundleGuard
enforces. Policies are validated when the module is imported, so a malformed
directive set stops the process before any build starts.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from .exceptions import ConfigurationError
from .models import SecurityPolicy

# Directives shared by every variant
BASE_DIRECTIVES: tuple[tuple[str, str | list[str]], ...] = (
    ("default-src", "'none'"),
    ("base-uri", "'self'"),
    ("connect-src", "'self'"),
    ("worker-src", "'self' blob:"),
    ("img-src", "'self' blob: data: content:"),
    ("font-src", "'self'"),
    ("frame-src", "'self'"),
    ("manifest-src", "'self'"),
    ("object-src", "'none'"),
    ("style-src", ["'self'"]),
)


def build_policy(
    directives: Mapping[str, Any] | Iterable[tuple[str, Any]],
) -> SecurityPolicy:
    """Construct a validated policy.

    Args:
        directives: Directive mapping, or key/value pairs checked for repeats

    Returns:
        Validated, immutable policy

    Raises:
        ConfigurationError: If a directive is unknown, empty, repeated or malformed
    """
    try:
        if isinstance(directives, Mapping):
            return SecurityPolicy(directives=dict(directives))
        return SecurityPolicy.from_pairs(directives)
    except (ValidationError, ValueError) as e:
        msg = f"Invalid security policy: {e}"
        raise ConfigurationError(msg, details={"stage": "policy"}) from e


STRICT_DYNAMIC_POLICY = build_policy((
    *BASE_DIRECTIVES,
    ("script-src", ["'strict-dynamic'"]),
    ("require-trusted-types-for", ["'script'"]),
))

SELF_STRICT_DYNAMIC_POLICY = build_policy((
    *BASE_DIRECTIVES,
    ("script-src", ["'self'", "'strict-dynamic'"]),
    ("require-trusted-types-for", ["'script'"]),
))

SELF_POLICY = build_policy((
    *BASE_DIRECTIVES,
    ("script-src", ["'self'"]),
))

POLICY_VARIANTS: dict[str, SecurityPolicy] = {
    "strict-dynamic": STRICT_DYNAMIC_POLICY,
    "self-strict-dynamic": SELF_STRICT_DYNAMIC_POLICY,
    "self": SELF_POLICY,
}

DEFAULT_VARIANT = "strict-dynamic"
DEFAULT_POLICY = POLICY_VARIANTS[DEFAULT_VARIANT]


def get_policy_variant(name: str) -> SecurityPolicy:
    """Look up a built-in policy variant by name.

    Raises:
        ConfigurationError: If the variant does not exist
    """
    try:
        return POLICY_VARIANTS[name]
    except KeyError:
        available = ", ".join(sorted(POLICY_VARIANTS))
        msg = f"Unknown policy variant '{name}' (available: {available})"
        raise ConfigurationError(msg, details={"stage": "policy"}) from None
