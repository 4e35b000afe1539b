"""Smart Krushi API access layer.

To talk to the backend:
    from krushi_client.core.api import ApiClient
    from krushi_client.core.session import SessionLifecycle

To record activity telemetry:
    from krushi_client.telemetry import ActivityLogger, BatchUploader

To build a fully wired client from settings:
    from krushi_client.client_factory import build_client
"""

__version__ = "1.0.0"
