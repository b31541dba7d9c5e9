"""Build environment detection."""

from __future__ import annotations

import os
from collections.abc import Mapping
from enum import Enum

DEFAULT_ENVIRONMENT_VARIABLE = "NODE_ENV"


class Environment(str, Enum):
    """Conventional build environment tags."""

    PRODUCTION = "production"
    DEVELOPMENT = "development"
    TEST = "test"


def is_production_build(environment_tag: str | None) -> bool:
    """Check whether augmentation applies to this build.

    Only an exact match on ``"production"`` passes; anything else, including
    a missing tag or different casing, is treated as a non-production build.
    """
    return environment_tag == Environment.PRODUCTION.value


def read_environment_tag(
    variable: str = DEFAULT_ENVIRONMENT_VARIABLE,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Read the ambient environment tag at call time.

    Args:
        variable: Environment variable holding the tag
        environ: Mapping to read from, defaults to the process environment

    Returns:
        The tag, or ``"development"`` when unset or empty
    """
    source = os.environ if environ is None else environ
    return source.get(variable) or Environment.DEVELOPMENT.value
