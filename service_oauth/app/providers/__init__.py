"""
Provider registry package.

Holds the immutable per-provider configuration (authorization, token,
user-info endpoints, required scopes and response encoding) combined with
client credentials from the environment. Built once at process start.
"""

from .registry import ProviderConfig, ProviderRegistry, ResponseEncoding, build_registry

__all__ = ["ProviderConfig", "ProviderRegistry", "ResponseEncoding", "build_registry"]
