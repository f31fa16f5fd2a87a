from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class ApiConfig(BaseModel):
    """Fleet platform API settings."""

    base_url: str = "https://api.machines.dev"
    token: Optional[str] = None
    timeout: float = 30.0


class ClusterConfig(BaseModel):
    """How to reach the target cluster's admin API and database."""

    admin_port: int = 5500
    database_port: int = 5432
    internal_domain: str = "internal"
    proxy: Optional[str] = None


class SSHConfig(BaseModel):
    """Secure channel settings used to reach private node addresses."""

    user: str = "root"
    identity_file: Optional[str] = None
    jump_host: Optional[str] = None
    connect_timeout: int = 30
    command_timeout: Optional[float] = None


class MigratorConfig(BaseModel):
    """The temporary worker node running the migration."""

    image: str = "codebaker/postgres-migrator:latest"
    vm_size: str = "shared-cpu-2x"
    process: str = "postgres-migrator"
    command: str = "migrate"


class LeaseConfig(BaseModel):
    ttl: int = 120
    concurrent: bool = False


class ReadinessConfig(BaseModel):
    timeout: float = 300.0
    poll_interval: float = 1.0


class VersionConfig(BaseModel):
    """Minimum image versions supporting import."""

    min_ha: str = "0.0.19"
    min_standalone: str = "0.0.19"


class PgferryConfig(BaseModel):
    """Top-level configuration model."""

    backend: Literal["inmemory", "http"] = "http"
    api: ApiConfig = ApiConfig()
    cluster: ClusterConfig = ClusterConfig()
    ssh: SSHConfig = SSHConfig()
    migrator: MigratorConfig = MigratorConfig()
    leases: LeaseConfig = LeaseConfig()
    readiness: ReadinessConfig = ReadinessConfig()
    versions: VersionConfig = VersionConfig()


def load_config(path: Optional[str] = None) -> PgferryConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PGFERRY_CONFIG env
            variable or 'pgferry.yaml' in the current directory.
    """

    config_path = path or os.getenv("PGFERRY_CONFIG", "pgferry.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PgferryConfig(**data)
    else:
        config = PgferryConfig()

    env_token = os.getenv("PGFERRY_API_TOKEN") or os.getenv("FLY_API_TOKEN")
    if env_token:
        config.api.token = env_token
    env_url = os.getenv("PGFERRY_API_URL")
    if env_url:
        config.api.base_url = env_url
    return config
