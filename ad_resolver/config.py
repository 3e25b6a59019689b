"""
Configuration for the AD group resolver.

Reads from environment variables (AD_RESOLVER_*) with sensible defaults.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings loaded from environment."""

    # Directory server
    server_host: str = "dc01.dept.example.edu"
    base_dn: str = "DC=dept,DC=example,DC=edu"
    bind_dn: str = ""
    bind_password: str = ""

    # Transport
    use_ldaps: bool = True
    ldaps_port: int = 636
    ldap_port: int = 389
    verify_certificate: bool = True
    ca_certificate: Optional[str] = None

    # Timeouts (seconds)
    connect_timeout: int = 10
    receive_timeout: int = 60
    search_time_limit: int = 30   # server-side; exceeding it triggers the slow path

    page_size: int = 500

    # Resolution
    domain_suffix: Optional[str] = None   # appended to bare usernames, e.g. dept.example.edu
    max_recursion_depth: int = 20

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    class Config:
        env_prefix = "AD_RESOLVER_"


settings = Settings()
