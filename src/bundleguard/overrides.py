"""Override hooks consumed by the host bundler."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from .augmenter import ConfigurationAugmenter
from .environment import DEFAULT_ENVIRONMENT_VARIABLE, read_environment_tag
from .models import AugmenterSettings, BuildConfiguration

Transform = Callable[[BuildConfiguration, str], BuildConfiguration]
HostConfig = BuildConfiguration | Mapping[str, Any]


def add_plugins(settings: AugmenterSettings | None = None) -> Transform:
    """Create the transform that appends the production stages."""
    augmenter = ConfigurationAugmenter(settings)
    return augmenter.augment


def override(
    *transforms: Transform,
    environment_variable: str = DEFAULT_ENVIRONMENT_VARIABLE,
) -> Callable[..., HostConfig]:
    """Compose transforms into a single host override hook.

    The returned hook accepts either a :class:`BuildConfiguration` or the
    host's plain mapping and returns the same kind. When ``env`` is not
    passed, the environment tag is read from ``environment_variable`` at call
    time, never at import.
    """

    def hook(config: HostConfig, env: str | None = None) -> HostConfig:
        tag = env if env is not None else read_environment_tag(environment_variable)
        current = (
            config if isinstance(config, BuildConfiguration)
            else BuildConfiguration.from_host(config)
        )
        base = current
        for transform in transforms:
            current = transform(current, tag)

        if isinstance(config, BuildConfiguration):
            return current
        return config if current is base else current.to_host()

    return hook


def create_overrides(settings: AugmenterSettings | None = None) -> dict[str, Callable[..., HostConfig]]:
    """Build the override table for a project's settings."""
    settings = settings or AugmenterSettings()
    return {
        "webpack": override(
            add_plugins(settings),
            environment_variable=settings.environment_variable,
        ),
    }


OVERRIDES = create_overrides()
webpack = OVERRIDES["webpack"]
