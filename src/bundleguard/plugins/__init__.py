"""Build plugins appended to host configurations."""

from .base import BuildPlugin, PluginProtocol
from .csp import CspPlugin, create_csp_plugin
from .purge import PurgeCssPlugin, create_purge_plugin, resolve_content_files

__all__ = [
    "BuildPlugin",
    "CspPlugin",
    "PluginProtocol",
    "PurgeCssPlugin",
    "create_csp_plugin",
    "create_purge_plugin",
    "resolve_content_files",
]
