"""
Configuration management for the Ruminer WeChat bridge.

Loads environment variables from .env file and provides typed access to
process-level configuration. Component settings live in infra/config.py.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
env_path = Path(__file__).parent / ".env"
load_dotenv(env_path)


class Config:
    """Process-level configuration."""

    # HTTP server
    PORT = int(os.getenv("PORT", "8000"))

    # Environment
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Required for every callback
    WECHAT_TOKEN = os.getenv("WECHAT_TOKEN", "")

    @classmethod
    def missing(cls) -> list[str]:
        required = ["WECHAT_TOKEN"]
        return [key for key in required if not getattr(cls, key)]

    @classmethod
    def validate(cls) -> bool:
        """Validate that required configuration is set."""
        missing = cls.missing()
        if missing:
            print(f"⚠️  Missing required environment variables: {', '.join(missing)}")
            print(f"   Please set them in .env file")
            return False

        return True


if __name__ == "__main__":
    # Test configuration loading
    print("Configuration loaded:")
    print(f"  WeChat Token: {'✓ Set' if Config.WECHAT_TOKEN else '✗ Missing'}")
    print(f"  Port: {Config.PORT}")
    print(f"  Environment: {Config.ENVIRONMENT}")
    print(f"  Log level: {Config.LOG_LEVEL}")
    print(f"\n  Validation: {'✓ PASSED' if Config.validate() else '✗ FAILED'}")
