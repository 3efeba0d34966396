"""Record gateway entrypoint.

Serves an in-process ledger over authenticated HTTP so remote feeds can
create and verify records through ``HTTPRecordStore``.
"""

import asyncio
import os
import signal

import bittensor as bt
from dotenv import load_dotenv


def main() -> None:
    if os.environ.get("CIPHERFEED_TEST_MODE") != "true":
        load_dotenv()

    bt.logging.info({"gateway": "starting"})

    import argparse
    from cipherfeed.config import add_args, load_settings

    parser = argparse.ArgumentParser(description="CipherFeed Record Gateway")
    bt.logging.add_args(parser)
    add_args(parser)
    parser.add_argument(
        "--gateway.allowed_hotkeys",
        type=str,
        default="",
        help="Comma-separated hotkeys allowed to authenticate. Empty allows any.",
    )
    args = parser.parse_args()
    settings = load_settings(args)

    raw_allowed = os.environ.get(
        "CIPHERFEED_GATEWAY__ALLOWED_HOTKEYS",
        getattr(args, "gateway.allowed_hotkeys", ""),
    )
    allowed = {hk.strip() for hk in raw_allowed.split(",") if hk.strip()} or None

    from cipherfeed.auth import GatewayAccessPolicy
    from cipherfeed.store.http_server import RecordGatewayServer
    from cipherfeed.store.local import LocalCoprocessor, LocalLedger

    key = settings.attestation_key_bytes()
    if key is None:
        bt.logging.warning({"gateway": "no attestation key configured, remote clients cannot write"})
    ledger = LocalLedger(LocalCoprocessor(key=key), address=settings.target_address or None)
    policy = GatewayAccessPolicy(
        allowed_hotkeys=allowed,
        token_ttl=settings.token_ttl,
        rate_limit_per_hour=settings.rate_limit_per_hour,
    )
    server = RecordGatewayServer(ledger, policy, host=settings.host, port=settings.port)

    bt.logging.info({
        "gateway_config": {
            "host": settings.host,
            "port": settings.port,
            "contract": ledger.address,
            "allowlist": len(allowed) if allowed else "any",
        }
    })

    loop = asyncio.new_event_loop()
    stop_event = asyncio.Event()

    def _signal_handler(sig, frame):
        bt.logging.info({"gateway": "shutdown_signal_received"})
        loop.call_soon_threadsafe(stop_event.set)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    async def _serve() -> None:
        await server.start()
        await stop_event.wait()

    try:
        loop.run_until_complete(_serve())
    except KeyboardInterrupt:
        bt.logging.info({"gateway": "keyboard_interrupt"})
    finally:
        loop.run_until_complete(server.stop())
        loop.close()
        bt.logging.info({"gateway": "stopped"})


if __name__ == "__main__":
    main()
