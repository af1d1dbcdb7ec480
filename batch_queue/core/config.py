from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from batch_queue.core.constants import ControlPlaneType


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Logging
    log_level: str = "INFO"

    # Amazon (instance per job)
    ec2_home: Optional[str] = None  # EC2 command line tools directory
    java_home: Optional[str] = None  # Required by the EC2 tools
    amazon_wait_timeout_seconds: float = 5
    amazon_instance_type: str = "t2.micro"
    amazon_ssh_user: str = "ec2-user"
    amazon_poll_interval_seconds: float = 5  # Helper script: instance and ssh checks

    # Kubernetes (pod per job)
    k8s_control_plane: ControlPlaneType = ControlPlaneType.KUBECTL
    k8s_namespace: Optional[str] = None  # None uses the current kubectl context
    k8s_poll_interval_seconds: float = 10
    k8s_query_timeout_seconds: float = 60
    k8s_reap_timeout_seconds: float = 5
    k8s_pod_start_attempts: int = 60  # Checks for Running, 5s apart

    # OpenTelemetry
    otel_service_name: str = "batch-queue"
    otel_exporter_endpoint: Optional[str] = None  # e.g. https://api.axiom.co/v1/traces
    otel_exporter_token: Optional[str] = None

    @property
    def otel_exporter_headers(self) -> dict:
        """Headers for the OTLP exporter."""
        if self.otel_exporter_token:
            return {"Authorization": f"Bearer {self.otel_exporter_token}"}
        return {}


settings = Settings()
