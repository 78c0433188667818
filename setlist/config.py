from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class RedisConfig(BaseModel):
    """Connection settings for the Redis context store."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class ContextStoreConfig(BaseModel):
    """Where run contexts are kept."""

    backend: Literal["inmemory", "sqlite", "redis"] = "inmemory"
    sqlite_path: str = "setlist-contexts.db"
    redis: RedisConfig = RedisConfig()


class ServerConfig(BaseModel):
    """Address the orchestrator listens on and advertises to workers."""

    host: str = "0.0.0.0"
    port: int = 50051
    talkback_host: Optional[str] = None


class RpcConfig(BaseModel):
    """Outbound call settings."""

    timeout: float = 30.0
    probe_timeout: float = 5.0
    max_clients: int = 128


class SetlistConfig(BaseModel):
    """Top-level configuration model."""

    server: ServerConfig = ServerConfig()
    rpc: RpcConfig = RpcConfig()
    context_store: ContextStoreConfig = ContextStoreConfig()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> SetlistConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to SETLIST_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("SETLIST_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = SetlistConfig(**data)
    else:
        config = SetlistConfig()

    env_db_url = os.getenv("SETLIST_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_context_store = os.getenv("SETLIST_CONTEXT_STORE")
    if env_context_store:
        config.context_store.backend = env_context_store
    env_talkback = os.getenv("SETLIST_TALKBACK_HOST")
    if env_talkback:
        config.server.talkback_host = env_talkback
    env_port = os.getenv("GRPC_PORT")
    if env_port:
        config.server.port = int(env_port)
    return config
