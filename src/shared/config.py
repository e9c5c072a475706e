"""Configuration management for the RPC Tool Gateway.

Supports YAML configuration files and environment variable overrides.
Configuration is loaded once and cached for performance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ROLE_PERMISSIONS: dict[str, list[str]] = {
    "anonymous": [],
    "authenticated": ["access content"],
    "administrator": ["access content", "administer site configuration"],
}

DEFAULT_SCOPES: dict[str, dict[str, str]] = {
    "profile": {
        "label": "User Profile",
        "description": "Access to user profile information",
    },
    "content:read": {
        "label": "Read Content",
        "description": "Read access to published content",
    },
    "content:write": {
        "label": "Write Content",
        "description": "Create and update content",
    },
    "content:delete": {
        "label": "Delete Content",
        "description": "Delete content",
    },
    "content_type:read": {
        "label": "Read Content Types",
        "description": "Access to content type definitions and configuration",
    },
    "user:read": {
        "label": "Read Users",
        "description": "Read user account information",
    },
    "user:write": {
        "label": "Write Users",
        "description": "Create and update user accounts",
    },
    "admin:access": {
        "label": "Administrative Access",
        "description": "Full administrative access to all content and configuration",
    },
}


class UserAccount(BaseModel):
    """A user known to the identity system."""
    user_id: str
    username: str
    roles: list[str] = Field(default_factory=list)


class GatewaySettings(BaseSettings):
    """Tool gateway HTTP and core configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8002)
    page_size: int = Field(default=50, gt=0, description="Tools per list page")
    realm: str = Field(default="MCP Tools", description="Realm used in WWW-Authenticate")
    discovery_cache_enabled: bool = Field(default=True)
    invoke_timeout_seconds: float = Field(default=30.0, gt=0)
    cache_max_age: int = Field(default=3600, ge=0, description="Max age of list/describe responses")
    resource_url: str = Field(default="http://localhost:8002")
    authorization_servers: list[str] = Field(default_factory=list)
    load_examples: bool = Field(default=True, description="Register the example procedures")

    # Audit
    enable_audit: bool = Field(default=True)
    audit_log_path: str = Field(default="logs/audit.log")

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        extra="ignore"
    )


class OAuthSettings(BaseSettings):
    """OAuth token configuration."""
    token_backend: str = Field(default="jwt", description="Token store: jwt, memory")
    secret_key: str = Field(default="change-me-in-production")
    algorithm: str = Field(default="HS256")
    token_expire_minutes: int = Field(default=60, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="OAUTH_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Component settings
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)

    # Identity and permissions
    role_permissions: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_ROLE_PERMISSIONS.items()}
    )
    users: list[UserAccount] = Field(default_factory=list)
    scopes: dict[str, dict[str, str]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_SCOPES.items()}
    )

    model_config = SettingsConfigDict(
        env_prefix="TOOL_GATEWAY_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def find_user(self, user_id: str) -> Optional[UserAccount]:
        """Look up a configured user account."""
        for user in self.users:
            if user.user_id == user_id:
                return user
        return None


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("TOOL_GATEWAY_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
