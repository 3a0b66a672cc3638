"""Driver settings."""

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Node driver settings loaded from environment variables."""

    # Readiness gate
    ready_timeout: float = 120.0  # seconds, ceiling for the whole boot wait
    ready_retry_interval: float = 1.0  # seconds between polls

    # Fail pre-deploy when certificate generation fails. When False, the
    # error is only logged and the node continues with empty TLS material.
    strict_certificates: bool = True

    # How the default bootstrap commands reach the container:
    # "file" writes them into the bind-mounted config dir, "exec" pipes them
    # through a shell inside the container.
    bootstrap_transfer: Literal["file", "exec"] = "file"

    # Lab directory permissions
    lab_dir_mode: int = 0o777
    file_mode: int = 0o644

    # Docker settings
    docker_socket: str = "unix:///var/run/docker.sock"
    docker_client_timeout: int = 300

    # Certificate generation
    cert_key_size: int = 2048
    cert_validity_days: int = 3650

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"

    class Config:
        env_prefix = "LABNODES_"


settings = Settings()
