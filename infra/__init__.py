"""
Infrastructure module exports.

Configuration and bootstrap for storage, security and collaborators.
"""

from .config import InfraConfig, KVBackendType, get_config
from .bootstrap import InfraBootstrap, bootstrap_infrastructure

__all__ = [
    "InfraConfig",
    "get_config",
    "KVBackendType",
    "InfraBootstrap",
    "bootstrap_infrastructure",
]
