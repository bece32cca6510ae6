"""Report generator configuration.

Loads settings from two YAML files:
  * reportgen.settings.yaml: non-secret configuration
  * reportgen.secrets.yaml: API keys and signing secrets (never committed)

Environment variables (GEMINI_API_KEY, HF_SPACE_URL, HF_TOKEN,
STRIPE_WEBHOOK_SECRET, STRIPE_SECRET_KEY) override values from the files.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("reportgen.settings.yaml")
SECRETS_FILE  = Path("reportgen.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class GeminiSecrets(BaseModel):
    api_key: Optional[str] = None


class RemoteSecrets(BaseModel):
    token: Optional[str] = None


class StripeSecrets(BaseModel):
    webhook_secret: Optional[str] = None
    secret_key:     Optional[str] = None


class Secrets(BaseModel):
    gemini: GeminiSecrets = Field(default_factory=GeminiSecrets)
    remote: RemoteSecrets = Field(default_factory=RemoteSecrets)
    stripe: StripeSecrets = Field(default_factory=StripeSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class LoggingSettings(BaseModel):
    level: str = "info"


class GeminiSettings(BaseModel):
    model: str = "gemini-2.5-flash"


class UploadSettings(BaseModel):
    temp_dir:         Optional[str] = None   # None → platform temp dir
    max_file_size_mb: int           = 50
    max_job_files:    int           = 5


class JobSettings(BaseModel):
    store:                   Literal["duckdb", "memory"] = "duckdb"
    db_path:                 str   = "jobs.duckdb"
    jobs_dir:                str   = "./jobs"
    retention_days:          int   = 7
    poll_interval_seconds:   float = 2.0
    poll_max_attempts:       int   = 60
    request_timeout_seconds: float = 120.0
    prompt: str = (
        "Generate an organised PDF report with charts, an executive summary "
        "and an analysis of the attached data."
    )


class RemoteSettings(BaseModel):
    """Remote processing backend (a Hugging Face Space).

    Each ``*_paths`` list is tried in order against ``base_url``; the first
    endpoint answering with a 2xx status wins.
    """
    base_url:       Optional[str] = None
    status_paths:   List[str] = Field(default_factory=lambda: [
        "/status?id={job_id}",
        "/status/{job_id}",
        "/api/status?id={job_id}",
        "/api/status/{job_id}",
    ])
    upload_paths:   List[str] = Field(default_factory=lambda: [
        "/upload",
        "/api/upload",
        "/run/predict",
        "/api/predict",
    ])
    webhook_paths:  List[str] = Field(default_factory=lambda: [
        "/stripe/webhook",
        "/api/stripe/webhook",
        "/api/mark-paid",
        "/mark-paid",
    ])
    mark_paid_path: str       = "/api/mark-paid"
    download_hosts: List[str] = Field(default_factory=list)


class PaymentSettings(BaseModel):
    require_payment_for_download: bool = False


class ReportConfig(BaseModel):
    server:   ServerSettings  = Field(default_factory=ServerSettings)
    logging:  LoggingSettings = Field(default_factory=LoggingSettings)
    gemini:   GeminiSettings  = Field(default_factory=GeminiSettings)
    uploads:  UploadSettings  = Field(default_factory=UploadSettings)
    jobs:     JobSettings     = Field(default_factory=JobSettings)
    remote:   RemoteSettings  = Field(default_factory=RemoteSettings)
    payments: PaymentSettings = Field(default_factory=PaymentSettings)
    secrets:  Secrets         = Field(default_factory=Secrets)

    @property
    def gemini_api_key(self) -> Optional[str]:
        return self.secrets.gemini.api_key or None


# ---------------------------------------------------------------------------
# Environment overrides and path resolution
# ---------------------------------------------------------------------------


def _apply_env_overrides(config: ReportConfig) -> None:
    """Let deployment environments override file-based values."""
    env = os.environ
    if env.get("GEMINI_API_KEY"):
        config.secrets.gemini.api_key = env["GEMINI_API_KEY"]
    if env.get("HF_SPACE_URL"):
        config.remote.base_url = env["HF_SPACE_URL"]
    if env.get("HF_TOKEN"):
        config.secrets.remote.token = env["HF_TOKEN"]
    if env.get("STRIPE_WEBHOOK_SECRET"):
        config.secrets.stripe.webhook_secret = env["STRIPE_WEBHOOK_SECRET"]
    if env.get("STRIPE_SECRET_KEY"):
        config.secrets.stripe.secret_key = env["STRIPE_SECRET_KEY"]


def _base_dir_for(settings_path: Path) -> Path:
    """Directory that relative paths in the settings file are resolved from.

    A settings file inside a ``config/`` directory resolves from the project
    root (its parent); any other layout resolves from the file's directory.
    """
    settings_dir = settings_path.resolve().parent
    if settings_dir.name == "config":
        return settings_dir.parent
    return settings_dir


def _resolve_path(value: str, base_dir: Path) -> str:
    path = Path(value)
    if path.is_absolute():
        return str(path)
    return str(base_dir / path)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> ReportConfig:
    """Load and merge settings + secrets into a single *ReportConfig*."""
    settings_path = Path(settings_path or SETTINGS_FILE)
    secrets_path = Path(secrets_path or settings_path.with_name(SECRETS_FILE.name))

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in ReportConfig
    settings_data["secrets"] = secrets_data

    config = ReportConfig(**settings_data)
    _apply_env_overrides(config)

    base_dir = _base_dir_for(settings_path)
    config.jobs.db_path = _resolve_path(config.jobs.db_path, base_dir)
    config.jobs.jobs_dir = _resolve_path(config.jobs.jobs_dir, base_dir)

    logger.info(
        "Settings loaded (server=%s:%s, model=%s, job_store=%s, remote=%s)",
        config.server.host,
        config.server.port,
        config.gemini.model,
        config.jobs.store,
        config.remote.base_url or "<not configured>",
    )
    return config


_config: Optional[ReportConfig] = None


def get_config() -> ReportConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[ReportConfig]) -> None:
    """Replace (or clear) the process-wide configuration."""
    global _config
    _config = config
