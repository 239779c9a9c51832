"""
Environment-specific deployment settings.

Cost-optimized defaults for development/testing.
"""

from dataclasses import dataclass
import os


@dataclass
class Settings:
    """Deployment settings with cost-optimized defaults."""

    # Environment
    environment: str = "dev"
    aws_region: str = "eu-west-2"  # Default AWS region

    # Engine switches passed to the Lambda
    multi_step_enabled: bool = True
    session_ttl_hours: int = 24
    popup_cache_ttl_seconds: int = 60

    # Database Configuration (Cost-optimized)
    db_instance_class: str = "t3.micro"  # Free tier eligible
    db_allocated_storage: int = 20  # Minimum GB

    # Lambda Configuration
    lambda_memory_mb: int = 512
    lambda_timeout_seconds: int = 15

    @classmethod
    def from_environment(cls) -> "Settings":
        """Load settings from environment variables."""
        env = os.environ.get("ENVIRONMENT", "dev")
        multi_step = os.environ.get("ENABLE_MULTI_POPUP", "true").lower() == "true"

        # Production overrides
        if env == "prod":
            return cls(
                environment="prod",
                multi_step_enabled=multi_step,
                db_instance_class="t3.small",  # Upgrade for prod
                db_allocated_storage=50,
                lambda_memory_mb=1024,
                lambda_timeout_seconds=30,
                popup_cache_ttl_seconds=300,
            )

        return cls(environment=env, multi_step_enabled=multi_step)
