"""Production build configuration augmenter."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from .environment import is_production_build
from .exceptions import ConfigurationError, ResolutionError
from .models import AugmenterSettings, BuildConfiguration, CrossOriginLoading, SecurityPolicy
from .plugins import (
    BuildPlugin,
    CspPlugin,
    PurgeCssPlugin,
    create_csp_plugin,
    create_purge_plugin,
    resolve_content_files,
)
from .policy import DEFAULT_POLICY

logger = logging.getLogger(__name__)


def _is_csp_description(entry: object) -> bool:
    """Match the mapping produced by :meth:`CspPlugin.describe`."""
    if not isinstance(entry, Mapping) or entry.get("name") != CspPlugin.name:
        return False
    options = entry.get("options")
    return isinstance(options, Mapping) and isinstance(options.get("directives"), Mapping)


def is_augmented(config: BuildConfiguration) -> bool:
    """Check whether a configuration already carries the CSP stage."""
    return any(
        isinstance(plugin, CspPlugin) or _is_csp_description(plugin)
        for plugin in config.plugins
    )


class ConfigurationAugmenter:
    """Appends the purge and CSP stages to production build configurations."""

    def __init__(self, settings: AugmenterSettings | None = None) -> None:
        """Initialize augmenter with settings.

        Args:
            settings: Stage selection, paths and policy; defaults apply when omitted
        """
        self.settings = settings or AugmenterSettings()

    @property
    def policy(self) -> SecurityPolicy:
        """Policy enforced by the CSP stage."""
        return self.settings.policy or DEFAULT_POLICY

    def augment(
        self,
        config: BuildConfiguration,
        environment_tag: str | None,
    ) -> BuildConfiguration:
        """Augment a build configuration for the given environment.

        Non-production builds get ``config`` back unchanged. Production builds
        get a new configuration with the purge plugin (when enabled) followed
        by the CSP plugin appended after any existing plugins, and
        ``crossOriginLoading`` set to ``"anonymous"``.

        Args:
            config: Base configuration from the host bundler
            environment_tag: Build environment, e.g. ``"production"``

        Returns:
            The augmented configuration, or ``config`` itself when gated off

        Raises:
            ResolutionError: If source files cannot be resolved
            ConfigurationError: If ``config`` was already augmented
        """
        if not is_production_build(environment_tag):
            logger.debug("Skipping augmentation for %r build", environment_tag)
            return config

        if is_augmented(config):
            msg = "Build configuration is already augmented; augment once per build"
            raise ConfigurationError(msg, details={"stage": "augment"})

        plugins = self.build_plugins()
        augmented = config.with_plugins(*plugins).with_output(
            cross_origin_loading=CrossOriginLoading.ANONYMOUS,
        )
        logger.info(
            "Augmented production build with %s",
            ", ".join(plugin.name for plugin in plugins),
        )
        return augmented

    def build_plugins(self) -> list[BuildPlugin]:
        """Construct the enabled stages in processing order.

        The purge stage always comes first so the CSP stage hashes the
        stylesheets the browser will actually receive.
        """
        plugins: list[BuildPlugin] = []
        if self.settings.purge_enabled:
            plugins.append(self._create_purge_stage())
        plugins.append(create_csp_plugin(self.policy, self.settings.hash_algorithm))
        return plugins

    def _create_purge_stage(self) -> PurgeCssPlugin:
        paths = self.settings.paths
        app_html = paths.resolved_html()
        if not app_html.is_file():
            msg = f"Entry HTML not found: {app_html}"
            raise ResolutionError(msg, details={"stage": "purge", "path": str(app_html)})

        content_files = resolve_content_files(paths.resolved_src(), self.settings.content_globs)
        logger.debug("Resolved %d content files for style purge", len(content_files))
        return create_purge_plugin(app_html, content_files, self.settings.safelist)


def augment(
    config: BuildConfiguration,
    environment_tag: str | None,
    settings: AugmenterSettings | None = None,
) -> BuildConfiguration:
    """Augment ``config`` with a one-off :class:`ConfigurationAugmenter`."""
    return ConfigurationAugmenter(settings).augment(config, environment_tag)
