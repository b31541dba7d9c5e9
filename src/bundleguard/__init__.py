"""BundleGuard: production build hardening with CSP, SRI and style purging."""

__version__ = "0.1.0"
__author__ = "BundleGuard Contributors"
__description__ = "Production build hardening with CSP, SRI and style purging"

from .augmenter import ConfigurationAugmenter, augment
from .environment import is_production_build
from .models import AugmenterSettings, BuildConfiguration, Directive, SecurityPolicy
from .policy import DEFAULT_POLICY

__all__ = [
    "DEFAULT_POLICY",
    "AugmenterSettings",
    "BuildConfiguration",
    "ConfigurationAugmenter",
    "Directive",
    "SecurityPolicy",
    "augment",
    "is_production_build",
]
