"""
rpgf/config.py: All tunable parameters for the RPGF core.

No cap should ever be hardcoded in a service module. Dataset limits, the
database location, and the testing switches live here so that a deployment
change is a single-file diff.
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class RPGFConfig:
    """
    Immutable configuration for the RPGF round core.

    All fields have documented defaults. Override by constructing a new
    RPGFConfig with the desired values, or use config_from_env().
    """

    # ── Custom Datasets ───────────────────────────────────────────────────────
    max_custom_datasets_per_round: int = 5
    # createDataset fails with a ConflictError once a round holds this many.

    max_custom_dataset_fields: int = 10
    # Maximum number of non-applicationId columns in an uploaded CSV.

    # ── Results ───────────────────────────────────────────────────────────────
    default_results_method: str = "median"
    # One of 'sum' | 'avg' | 'median'. Used by the CLI when --method is omitted.

    # ── Audit Log ─────────────────────────────────────────────────────────────
    audit_log_page_size: int = 50
    # Entries per page when the caller does not pass a limit.

    max_audit_log_page_size: int = 200
    # Larger limits are rejected with a ValidationError.

    # ── Storage ───────────────────────────────────────────────────────────────
    database_url: str = "sqlite+pysqlite:///:memory:"
    # Any SQLAlchemy URL. Production uses postgresql+psycopg://...

    database_echo: bool = False
    # Echo emitted SQL through the sqlalchemy.engine logger.

    # ── Testing Surface ───────────────────────────────────────────────────────
    enable_dangerous_test_routes: bool = False
    # Enables the phase override control surface. MUST stay off in production.

    # ── API ───────────────────────────────────────────────────────────────────
    api_title: str = "RPGF Round API"


# Singleton default: import this everywhere instead of constructing anew.
DEFAULT_CONFIG = RPGFConfig()


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


def config_from_env() -> RPGFConfig:
    """
    Build an RPGFConfig from environment variables, falling back to defaults.

    Recognised variables:
        RPGF_DATABASE_URL            : SQLAlchemy database URL.
        RPGF_DATABASE_ECHO           : '1' / 'true' to echo SQL.
        RPGF_DEFAULT_RESULTS_METHOD  : 'sum' | 'avg' | 'median'.
        ENABLE_DANGEROUS_TEST_ROUTES : 'true' to expose the phase override.
    """
    return RPGFConfig(
        database_url=os.environ.get("RPGF_DATABASE_URL", DEFAULT_CONFIG.database_url),
        database_echo=_env_flag("RPGF_DATABASE_ECHO"),
        default_results_method=os.environ.get(
            "RPGF_DEFAULT_RESULTS_METHOD", DEFAULT_CONFIG.default_results_method
        ),
        enable_dangerous_test_routes=_env_flag("ENABLE_DANGEROUS_TEST_ROUTES"),
    )
