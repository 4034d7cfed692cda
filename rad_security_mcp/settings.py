from __future__ import annotations

from fastmcp.server.server import Transport
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RAD_SECURITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # RAD Security API
    api_url: str = "https://api.rad.security"
    account_id: str = ""
    tenant_id: str = ""
    access_key_id: str = ""
    secret_key: str = ""
    session_token: str = ""

    # MCP Server
    mcp_transport_mode: Transport = Field(default="stdio", validation_alias="MCP_TRANSPORT_MODE")
    mcp_host: str = "0.0.0.0"
    mcp_port: int = 8000
    log_level: str = "INFO"


settings = Settings()
