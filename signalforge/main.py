"""SignalForge — application entry point.

Boots the FastAPI server around a ``BridgeService`` and provides the CLI
entry point for serving the API and replaying captured frames.
"""

import json
import logging
from typing import Iterable, Optional

from fastapi import FastAPI

from signalforge.api.routers import configure_routers, router
from signalforge.bridge.actuator import SessionLauncher, TradeActuator
from signalforge.bridge.models import RawFrame
from signalforge.bridge.service import BridgeService
from signalforge.config import Config
from signalforge.market.providers import get_live_provider

app = FastAPI(title="SignalForge API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("signalforge")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


def build_service(
    config: Config,
    actuator: Optional[TradeActuator] = None,
    launcher: Optional[SessionLauncher] = None,
) -> BridgeService:
    """Create the bridge service and wire it into the API routers."""
    provider = get_live_provider(config)
    if provider is not None:
        logger.info("Live close provider: %s", provider.name)
    service = BridgeService(config, actuator=actuator, launcher=launcher, provider=provider)
    configure_routers(service, heartbeat_seconds=config.heartbeat_seconds)
    return service


def read_frames(lines: Iterable[str]) -> list[RawFrame]:
    """Parse JSON-lines frame captures: ``{"direction", "url", "payload", "ts"}``.

    Blank and malformed lines are skipped with a warning.
    """
    frames: list[RawFrame] = []
    for lineno, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            row = json.loads(line)
            frames.append(RawFrame(
                direction=row.get("direction", "in"),
                source_url=row["url"],
                payload=row["payload"],
                ts=int(row["ts"]),
            ))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Skipping capture line %d: %s", lineno, exc)
    return frames


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio

    from signalforge.config import load_config

    parser = argparse.ArgumentParser(description="SignalForge signal bridge")
    parser.add_argument(
        "--mode",
        choices=["serve", "replay"],
        default="serve",
        help="serve the API, or replay a frame capture and print a signal (default: serve)",
    )
    parser.add_argument("--frames", help="JSON-lines frame capture (replay mode)")
    parser.add_argument("--pair", help="Instrument to score after replay (default: most recent)")
    parser.add_argument("--expiry", default="1m", help="Expiry bucket to score (default: 1m)")
    parser.add_argument("--env", help="Path to a .env file")
    args = parser.parse_args()

    config = load_config(args.env)
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.mode == "replay":
        if not args.frames:
            parser.error("--frames is required in replay mode")
        asyncio.run(_run_replay(config, args.frames, args.pair, args.expiry))
    else:
        asyncio.run(_run_server(config))


async def _run_server(config: Config) -> None:
    """Serve the API until interrupted, then tear the service down."""
    import uvicorn

    service = build_service(config)
    uvi_config = uvicorn.Config(
        app,
        host=config.api_host,
        port=config.api_port,
        log_level=config.log_level.lower(),
    )
    server = uvicorn.Server(uvi_config)

    logger.info("SignalForge API on http://%s:%d", config.api_host, config.api_port)
    try:
        await server.serve()
    finally:
        await service.shutdown()
    logger.info("SignalForge stopped.")


async def _run_replay(config: Config, path: str, pair: Optional[str], expiry: str) -> None:
    """Feed a capture through the ingestion pipeline and score one pair."""
    from signalforge.cli.dashboard import print_signal, print_status

    service = build_service(config)
    with open(path, "r", encoding="utf-8") as f:
        frames = read_frames(f)

    await service.start()
    recorded = sum(service.ingest_frame(frame) for frame in frames)
    logger.info("Replayed %d frame(s), %d quote(s) recorded", len(frames), recorded)
    print_status(service.get_status(), service.store)

    target = pair
    if not target:
        quotes = service.store.get_latest_quotes()
        target = quotes[0].instrument_id if quotes else None
    if target:
        now = frames[-1].ts if frames else None
        result = await service.scorer.score(target, expiry, now_ms=now)
        print_signal(result)
    else:
        logger.warning("No quotes recorded; nothing to score.")
    await service.shutdown()


if __name__ == "__main__":
    _run_cli()
