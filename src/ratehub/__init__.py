"""
RateHub - Feed throughput aggregation and live metrics streaming
"""

__version__ = "0.1.0"

# Client exports
from ratehub.client import (
    ThroughputReport,
    RateHubClient,
    RateHubQueryClient,
    get_ratehub_client,
    send_report,
    create_report,
    is_ratehub_enabled,
)

__all__ = [
    # Version
    "__version__",
    # Client classes
    "ThroughputReport",
    "RateHubClient",
    "RateHubQueryClient",
    # Client functions
    "get_ratehub_client",
    "send_report",
    "create_report",
    "is_ratehub_enabled",
    "get_app",
]


def get_app():
    """
    Get a FastAPI app instance configured from the environment.

    Serve with: uvicorn --factory ratehub:get_app
    """
    from .app import create_app
    return create_app()
