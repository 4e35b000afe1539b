"""Wire the access layer together from a ClientConfig."""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from krushi_client.config import ClientConfig, load_settings
from krushi_client.core.api import AccountService, ApiClient, Transport
from krushi_client.core.credentials import CredentialStore, JsonFileStorage, MemoryStorage, SessionIdStore
from krushi_client.core.session import ForcedLogout, SessionLifecycle
from krushi_client.telemetry import ActivityLogger, ActivityType, BatchUploader, Severity

logger = logging.getLogger(__name__)


@dataclass
class KrushiClient:
    """Every service of one client instance, sharing a single CredentialStore."""
    config: ClientConfig
    store: CredentialStore
    api: ApiClient
    session: SessionLifecycle
    account: AccountService
    uploader: BatchUploader
    activity: ActivityLogger

    async def start(self) -> None:
        """Start background telemetry delivery. Call from a running event loop."""
        if self.config.telemetry_enabled:
            self.uploader.start()

    async def aclose(self) -> None:
        """Flush telemetry, wait for logout notifications, release the HTTP pool."""
        await self.uploader.stop(flush=self.config.telemetry_enabled)
        await self.session.aclose()
        self.api.close()


def build_client(config: Optional[ClientConfig] = None, transport: Optional[Transport] = None) -> KrushiClient:
    """Create a fully wired client.

    Args:
        config: Settings to use (defaults to a fresh ``load_settings()``)
        transport: Network transport override, mainly for tests

    Returns:
        KrushiClient bundle; call ``await bundle.start()`` to begin telemetry
    """
    cfg = config if config is not None else load_settings()

    if cfg.credentials_file:
        store = CredentialStore(JsonFileStorage(cfg.credentials_file))
    else:
        store = CredentialStore(MemoryStorage())

    api = ApiClient(
        cfg.api_root,
        store,
        transport,
        timeout=cfg.request_timeout,
        token_refresh_leeway=cfg.token_refresh_leeway,
    )
    session = SessionLifecycle(api, login_path=cfg.login_path)

    uploader = BatchUploader(
        api,
        batch_size=cfg.telemetry_batch_size,
        flush_interval=cfg.telemetry_flush_interval,
        max_attempts=cfg.telemetry_max_attempts,
        backoff_base=cfg.telemetry_backoff_base,
        backoff_max=cfg.telemetry_backoff_max,
    )
    activity = ActivityLogger(
        uploader,
        store,
        SessionIdStore(MemoryStorage()),
        url=cfg.app_url,
        enabled=cfg.telemetry_enabled,
    )

    def _record_forced_logout(signal: ForcedLogout) -> None:
        activity.log(ActivityType.LOGOUT, Severity.MEDIUM, {"forced": True, "reason": signal.reason})

    session.add_forced_logout_listener(_record_forced_logout)

    logger.debug("Client built for %s (telemetry %s)", cfg.api_root, "on" if cfg.telemetry_enabled else "off")
    return KrushiClient(
        config=cfg,
        store=store,
        api=api,
        session=session,
        account=AccountService(api),
        uploader=uploader,
        activity=activity,
    )
