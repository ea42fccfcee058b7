"""
Logfire observability configuration for VideoReach.

Provides tracing for:
- Campaign runs (one span per process/retry call)
- Per-recipient pipelines
- Video synthesis polling

Usage:
    # At process startup (CLI entry point or worker)
    from videoreach.core.observability import setup_logfire
    setup_logfire()

    # In services
    import logfire

    with logfire.span("process_campaign", campaign_id=campaign_id):
        ...

Spans opened before setup_logfire() is called (or when no token is set)
are not exported.

Environment Variables:
    LOGFIRE_TOKEN: Logfire write token (required to export)
    LOGFIRE_PROJECT_NAME: Project name in Logfire dashboard
    LOGFIRE_ENVIRONMENT: Environment name (development, staging, production)
"""

import os
import logging
from typing import Optional

import logfire

logger = logging.getLogger(__name__)

_logfire_configured = False


def setup_logfire(
    project_name: Optional[str] = None,
    environment: Optional[str] = None,
    service_name: str = "videoreach"
) -> bool:
    """
    Configure Logfire for observability.

    Args:
        project_name: Logfire project name (or LOGFIRE_PROJECT_NAME env var)
        environment: Environment name (or LOGFIRE_ENVIRONMENT env var)
        service_name: Service name for tracing

    Returns:
        True if Logfire was configured to export, False if skipped (no token)
    """
    global _logfire_configured

    if _logfire_configured:
        logger.debug("Logfire already configured")
        return True

    token = os.environ.get("LOGFIRE_TOKEN")
    if not token:
        logger.info("LOGFIRE_TOKEN not set, spans will not be exported")
        logfire.configure(send_to_logfire=False, console=False, service_name=service_name)
        return False

    project = project_name or os.environ.get("LOGFIRE_PROJECT_NAME", "videoreach")
    env = environment or os.environ.get("LOGFIRE_ENVIRONMENT", "development")

    try:
        logfire.configure(
            token=token,
            service_name=service_name,
            environment=env,
            send_to_logfire=True,
        )
        logfire.instrument_pydantic()

        _logfire_configured = True
        logger.info(f"Logfire configured: project={project}, environment={env}")
        return True

    except Exception as e:
        logger.error(f"Failed to configure Logfire: {e}")
        return False


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup shared by the CLI and workers."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
