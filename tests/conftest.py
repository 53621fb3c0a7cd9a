"""Pytest configuration and fixtures."""

import base64
import sys
from pathlib import Path

import pytest

# Add project root (and this directory, for the shared fakes) to sys.path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(Path(__file__).parent))

from storage.memory import InMemoryKVStore  # noqa: E402


@pytest.fixture
def kv():
    """Fresh in-memory KV store."""
    return InMemoryKVStore()


@pytest.fixture
def encoding_aes_key():
    """Valid 43-char EncodingAESKey (decodes to bytes 0..31)."""
    return base64.b64encode(bytes(range(32))).decode("ascii").rstrip("=")


@pytest.fixture
def vault_key_b64():
    """Token vault key, distinct from the message key."""
    return base64.b64encode(bytes(range(100, 132))).decode("ascii")
