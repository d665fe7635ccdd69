from enum import Enum


class Environment(str, Enum):
    """Application environment types."""

    PRODUCTION = "production"
    TESTING = "testing"
    DEVELOPMENT = "development"

    @classmethod
    def is_development(cls, env: str) -> bool:
        """Check if environment is development"""
        return env.lower() == cls.DEVELOPMENT.value
