from __future__ import annotations

import contextlib
import logging
import socket
import threading
from http.server import ThreadingHTTPServer
from pathlib import Path

from .api import CrayonAPI
from .caido_client import CaidoClient
from .config import CrayonConfig
from .engine import AutoColorEngine
from .http_api import build_api_handler
from .pending import PendingTracker
from .settings import SettingsCache, SettingsStore

logger = logging.getLogger(__name__)


def build_settings_cache(config: CrayonConfig) -> SettingsCache:
    path = Path(config.settings_path) if config.settings_path else None
    return SettingsCache(SettingsStore(path))


def build_engine(
    config: CrayonConfig, client: CaidoClient, settings: SettingsCache
) -> AutoColorEngine:
    return AutoColorEngine(
        client,
        client,
        settings,
        tracker=PendingTracker(max_size=config.pending_max, ttl_ms=config.pending_ttl_ms),
        batch_size=config.batch_size,
        pending_checks_per_tick=config.pending_checks_per_tick,
        poll_interval_ms=config.poll_interval_ms,
    )


def _build_server(host: str, port: int, api: CrayonAPI) -> ThreadingHTTPServer:
    class Server(ThreadingHTTPServer):
        address_family = socket.AF_INET6 if ":" in host else socket.AF_INET
        daemon_threads = True

        def server_bind(self) -> None:
            if self.address_family == socket.AF_INET6:
                with contextlib.suppress(OSError):
                    self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            super().server_bind()

    return Server((host, port), build_api_handler(api))


def run_daemon(
    config: CrayonConfig,
    *,
    client: CaidoClient | None = None,
    stop_event: threading.Event | None = None,
) -> None:
    with contextlib.ExitStack() as stack:
        stack.callback(logger.info, "crayon stopped")
        if client is None:
            client = stack.enter_context(
                CaidoClient(
                    config.caido_url,
                    token=config.caido_token,
                    timeout_s=config.request_timeout_s,
                )
            )
        settings = build_settings_cache(config)
        # Warm the cache so a broken settings file is reported at startup.
        settings.get()
        engine = build_engine(config, client, settings)
        api = CrayonAPI(engine, settings)

        if config.api_enabled:
            server = _build_server(config.api_host, config.api_port, api)
            stack.callback(server.server_close)
            thread = threading.Thread(target=server.serve_forever, daemon=True)
            thread.start()
            stack.callback(server.shutdown)
            logger.info(
                "crayon api listening",
                extra={"host": config.api_host, "port": server.server_address[1]},
            )

        stop = stop_event or threading.Event()
        stack.callback(engine.stop)
        engine.start()
        logger.info("crayon auto-color engine started", extra={"caido_url": client.base_url})
        stop.wait()
