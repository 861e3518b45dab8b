"""Environment-driven settings for the path-coverage harness."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_HTTP_TIMEOUT = 10.0


class Settings(BaseModel):
    """Where the collaborators live and how patiently to talk to them."""

    es_host: str = "localhost"
    es_port: int = 9200
    es_index_pattern: str = "oots-logs-*"
    bridge_url: str = "http://localhost:3003"
    mock_emrex_url: str = "http://localhost:9081"
    red_gateway_url: str = "http://localhost:8280"
    blue_gateway_url: str = "http://localhost:8180"
    domibus_user: str = "admin"
    domibus_pass: str = "123456"
    http_timeout: float = Field(default=DEFAULT_HTTP_TIMEOUT, gt=0)
    poll_budget_ms: int = Field(default=5000, ge=0)
    poll_interval_ms: int = Field(default=2000, gt=0)

    @property
    def es_url(self) -> str:
        return f"http://{self.es_host}:{self.es_port}"

    @property
    def bridge_store_url(self) -> str:
        return f"{self.bridge_url.rstrip('/')}/store"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        mapping = {
            "es_host": "ES_HOST",
            "es_port": "ES_PORT",
            "es_index_pattern": "ES_INDEX_PATTERN",
            "bridge_url": "BRIDGE_URL",
            "mock_emrex_url": "MOCK_EMREX_URL",
            "red_gateway_url": "RED_GATEWAY_URL",
            "blue_gateway_url": "BLUE_GATEWAY_URL",
            "domibus_user": "DOMIBUS_USER",
            "domibus_pass": "DOMIBUS_PASS",
            "http_timeout": "PATH_COVERAGE_HTTP_TIMEOUT",
            "poll_budget_ms": "PATH_COVERAGE_POLL_BUDGET_MS",
            "poll_interval_ms": "PATH_COVERAGE_POLL_INTERVAL_MS",
        }
        values: dict[str, Any] = {field: env[name] for field, name in mapping.items() if env.get(name)}
        return cls.model_validate(values)
