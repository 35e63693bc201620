from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Harness configuration"""

    # Application
    app_name: str = "mongoimage"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    # Image under test
    image_name: str = ""
    client_binary: str = "mongo"
    mongodb_port: int = 27017
    config_file_path: str = "/etc/mongod.conf"
    data_path: str = "/var/lib/mongodb/data"
    help_file_path: str = "/help.1"

    # Docker
    docker_network_prefix: str = "mongoimage"
    docker_container_prefix: str = "mongoimage"
    stop_timeout_seconds: int = 10

    # Polling
    readiness_attempts: int = 20
    readiness_interval_seconds: float = 2.0
    creation_timeout_seconds: int = 60

    # Replica set
    replica_set_name: str = "rs0"
    replica_member_count: int = 3
    replica_command: List[str] = ["run-mongod-replication"]
    replica_keyfile_value: str = "xxxxxxxxxxxx"
    replica_convergence_timeout_seconds: int = 120
    replica_poll_interval_seconds: float = 3.0

    # Documentation bundle
    # Relative paths resolve against the working directory; empty skips the manual
    readme_path: str = "README.md"

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
