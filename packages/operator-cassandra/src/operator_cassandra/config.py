"""Environment-based configuration for the Cassandra operator."""

from pydantic_settings import BaseSettings


class OperatorSettings(BaseSettings):
    """Operator configuration.

    All settings can be overridden via environment variables with
    CASS_OPERATOR_ prefix. For example:
        CASS_OPERATOR_MGMT_API_PORT=8443
        CASS_OPERATOR_EMM_ENABLED=false
    """

    # Management API (one endpoint per node-instance)
    mgmt_api_scheme: str = "http"
    mgmt_api_port: int = 8080
    mgmt_api_timeout_seconds: float = 60.0
    mgmt_api_drain_timeout_seconds: float = 120.0

    # Requeue delays
    requeue_short_seconds: float = 2.0
    requeue_decommission_seconds: float = 5.0
    requeue_decommission_wait_seconds: float = 10.0
    requeue_not_enough_resources_seconds: float = 10.0

    # Controller
    workers: int = 4
    backoff_min_seconds: float = 1.0
    backoff_max_seconds: float = 300.0

    # Behaviour switches
    emm_enabled: bool = True
    tolerate_decommission_errors: bool = True

    log_level: str = "INFO"

    model_config = {"env_prefix": "CASS_OPERATOR_"}


settings = OperatorSettings()
