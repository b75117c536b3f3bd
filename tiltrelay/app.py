"""Server runtime: WebSocket relay plus the polling sample store.

Only wiring and lifecycle live here. Fan-out rules are in `relay_hub.py`,
expiry rules in `sample_store.py` and HTTP schemas in `api_models.py`.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from .config import AppConfig, load_config
from .relay_hub import BroadcastRelay
from .routes import create_router
from .sample_store import EphemeralSampleStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeState:
    config: AppConfig
    relay: BroadcastRelay
    store: EphemeralSampleStore
    tasks: list[asyncio.Task] = field(default_factory=list)


def create_app(config_path: Path | None = None) -> FastAPI:
    config = load_config(config_path)

    runtime = RuntimeState(
        config=config,
        relay=BroadcastRelay(send_timeout_s=config.relay.send_timeout_s),
        store=EphemeralSampleStore(
            freshness_ms=config.store.freshness_ms,
            retention_ms=config.store.retention_ms,
            default_key=config.store.default_room,
        ),
    )

    async def sweep_loop() -> None:
        # Writes already sweep; this only reclaims rooms nobody writes to anymore.
        interval = config.store.sweep_interval_s
        while True:
            await asyncio.sleep(interval)
            try:
                runtime.store.sweep()
            except Exception:
                LOGGER.warning("Store sweep failed; will retry.", exc_info=True)

    async def start_runtime() -> None:
        runtime.tasks = [
            asyncio.create_task(sweep_loop(), name="store-sweep"),
        ]
        LOGGER.info(
            "Relay listening on path %s; sensor store on /api/sensor",
            config.relay.path,
        )

    async def stop_runtime() -> None:
        for task in runtime.tasks:
            task.cancel()
        await asyncio.gather(*runtime.tasks, return_exceptions=True)
        runtime.tasks.clear()
        try:
            await runtime.relay.close_all()
        except Exception:
            LOGGER.warning("Error closing relay connections", exc_info=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await start_runtime()
        try:
            yield
        finally:
            await stop_runtime()

    app = FastAPI(title="tiltrelay", lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(create_router(runtime))
    return app


app: FastAPI | None = (
    create_app()
    if __name__ != "__main__" and os.getenv("TILTRELAY_DISABLE_AUTO_APP", "0") != "1"
    else None
)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the tiltrelay server")
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML")
    args = parser.parse_args()

    runtime_app = create_app(config_path=args.config)
    runtime: RuntimeState = runtime_app.state.runtime
    uvicorn.run(
        runtime_app,
        host=runtime.config.server.host,
        port=runtime.config.server.port,
        log_level=runtime.config.logging.level,
    )


if __name__ == "__main__":
    main()
