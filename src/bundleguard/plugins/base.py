"""Base classes and protocols for build plugins."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, ClassVar, Protocol

from ..exceptions import PluginError

logger = logging.getLogger(__name__)


class PluginProtocol(Protocol):
    """Protocol defining the interface the host uses to run a plugin."""

    name: str

    def run(self, assets: Mapping[str, str]) -> dict[str, str]:
        """Process emitted assets.

        Args:
            assets: Emitted asset path (relative, POSIX style) mapped to its text

        Returns:
            New asset mapping with this plugin's rewrites applied
        """
        ...


class BuildPlugin(ABC):
    """Abstract base class for build plugins.

    Subclasses are immutable descriptions of a build step. The host calls
    :meth:`run` once per build with the emitted assets; the input mapping is
    never modified.
    """

    name: ClassVar[str] = "plugin"

    @abstractmethod
    def can_handle_asset(self, asset_path: str) -> bool:
        """Check if this plugin rewrites the given asset.

        Args:
            asset_path: Relative path of the emitted asset

        Returns:
            True if the asset should be passed to :meth:`transform`
        """
        ...

    @abstractmethod
    def transform(
        self,
        content: str,
        asset_path: str,
        assets: Mapping[str, str],
        context: Any,
    ) -> str:
        """Rewrite a single asset - implement in subclasses.

        Args:
            content: Current asset text
            asset_path: Relative path of the asset
            assets: All assets as seen so far in this run
            context: Whatever :meth:`prepare` returned for this run

        Returns:
            Rewritten asset text
        """
        ...

    @abstractmethod
    def describe(self) -> dict[str, Any]:
        """Serializable description used when writing configurations back out."""
        ...

    def prepare(self, assets: Mapping[str, str]) -> Any:
        """Compute per-run state before any asset is transformed."""
        return None

    def run(self, assets: Mapping[str, str]) -> dict[str, str]:
        """Execute the plugin over every asset it handles.

        Raises:
            PluginError: If preparation or any asset rewrite fails
        """
        result = dict(assets)
        try:
            context = self.prepare(result)
        except PluginError as e:
            e.details.setdefault("stage", self.name)
            raise
        except Exception as e:
            raise PluginError(
                f"Plugin preparation failed: {e}",
                plugin_name=self.name,
                details={"stage": self.name},
            ) from e

        for asset_path in list(result):
            if not self.can_handle_asset(asset_path):
                continue
            try:
                rewritten = self.transform(result[asset_path], asset_path, result, context)
            except PluginError as e:
                e.details.setdefault("stage", self.name)
                raise
            except Exception as e:
                raise PluginError(
                    f"Plugin failed on {asset_path}: {e}",
                    plugin_name=self.name,
                    asset_path=asset_path,
                    details={"stage": self.name},
                ) from e
            if rewritten != result[asset_path]:
                logger.debug("%s rewrote %s", self.name, asset_path)
            result[asset_path] = rewritten

        return result
