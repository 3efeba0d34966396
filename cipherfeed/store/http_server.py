"""Authenticated HTTP gateway in front of a LocalLedger.

Routes:
  POST /gateway/auth/challenge   - request auth challenge
  POST /gateway/auth/respond     - submit signed challenge for bearer token
  GET  /status                   - availability + contract address (public)
  GET  /records                  - list record ids
  GET  /records/{id}             - public fields of a record
  GET  /records/{id}/handle      - ciphertext handle of a record
  POST /records                  - create a record (signer = caller hotkey)
  POST /records/{id}/verify      - submit a decryption proof
  GET  /tx/{tx_id}               - transaction status
"""

from __future__ import annotations

import bittensor as bt
from aiohttp import web

from cipherfeed.auth import GatewayAccessPolicy

from .local import LocalLedger


def _hk(hotkey: str | None) -> str:
    if not hotkey:
        return "none"
    return hotkey[:16]


def _not_found(record_id: str) -> web.Response:
    return web.json_response({"error": "not_found", "record_id": record_id}, status=404)


class RecordGatewayServer:
    """Lightweight async HTTP server exposing a ledger to remote callers."""

    def __init__(
        self,
        ledger: LocalLedger,
        access_policy: GatewayAccessPolicy,
        host: str = "127.0.0.1",
        port: int = 8300,
    ):
        self.ledger = ledger
        self.access_policy = access_policy
        self.host = host
        self.port = port
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    def _build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/gateway/auth/challenge", self._handle_challenge)
        app.router.add_post("/gateway/auth/respond", self._handle_respond)
        app.router.add_get("/status", self._handle_status)
        app.router.add_get("/records", self._handle_list)
        app.router.add_post("/records", self._handle_create)
        app.router.add_get("/records/{record_id}", self._handle_get)
        app.router.add_get("/records/{record_id}/handle", self._handle_handle)
        app.router.add_post("/records/{record_id}/verify", self._handle_verify)
        app.router.add_get("/tx/{tx_id}", self._handle_tx)
        return app

    async def start(self) -> None:
        self._app = self._build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        bt.logging.info({"record_gateway": {"status": "started", "port": self.port, "contract": self.ledger.address}})

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            bt.logging.info({"record_gateway": "stopped"})

    # -- Auth routes --

    async def _handle_challenge(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
            hotkey = body.get("hotkey", "")
        except Exception:
            return web.json_response({"error": "invalid_body"}, status=400)

        if not self.access_policy.is_allowed(hotkey):
            bt.logging.info({"gateway_request": {"endpoint": "auth/challenge", "hotkey": _hk(hotkey), "status": 403}})
            return web.json_response({"error": "ineligible"}, status=403)

        nonce = self.access_policy.issue_challenge(hotkey)
        return web.json_response({"nonce": nonce})

    async def _handle_respond(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
            hotkey = body.get("hotkey", "")
            nonce = body.get("nonce", "")
            signature = body.get("signature", "")
        except Exception:
            return web.json_response({"error": "invalid_body"}, status=400)

        token = self.access_policy.verify_response(hotkey, nonce, signature)
        if token is None:
            bt.logging.warning({"gateway_request": {"endpoint": "auth/respond", "hotkey": _hk(hotkey), "status": 403}})
            return web.json_response({"error": "auth_failed"}, status=403)
        return web.json_response({"token": token})

    def _authorize(self, request: web.Request, endpoint: str) -> tuple[str | None, web.Response | None]:
        """Resolve the caller hotkey from the bearer token, or an error response."""
        auth = request.headers.get("Authorization", "")
        hotkey = self.access_policy.validate_token(auth[7:]) if auth.startswith("Bearer ") else None
        if hotkey is None:
            bt.logging.debug({"gateway_request": {"endpoint": endpoint, "status": 401}})
            return None, web.json_response({"error": "unauthorized"}, status=401)
        if not self.access_policy.check_rate_limit(hotkey):
            return None, web.json_response({"error": "rate_limited"}, status=429)
        return hotkey, None

    # -- Read routes --

    async def _handle_status(self, request: web.Request) -> web.Response:
        available = await self.ledger.is_available()
        return web.json_response({"available": available, "contract": self.ledger.address})

    async def _handle_list(self, request: web.Request) -> web.Response:
        hotkey, denied = self._authorize(request, "records")
        if denied is not None:
            return denied
        ids = await self.ledger.list_ids()
        return web.json_response({"ids": ids})

    async def _handle_get(self, request: web.Request) -> web.Response:
        hotkey, denied = self._authorize(request, "records/{id}")
        if denied is not None:
            return denied
        record_id = request.match_info["record_id"]
        try:
            stored = await self.ledger.get(record_id)
        except LookupError:
            return _not_found(record_id)
        return web.json_response({
            "title": stored.title,
            "read_time": stored.read_time,
            "public_views": stored.public_views,
            "created_at": stored.created_at.isoformat(),
            "creator": stored.creator,
            "verified": stored.verified,
            "decrypted_value": stored.decrypted_value,
        })

    async def _handle_handle(self, request: web.Request) -> web.Response:
        hotkey, denied = self._authorize(request, "records/{id}/handle")
        if denied is not None:
            return denied
        record_id = request.match_info["record_id"]
        try:
            handle = await self.ledger.get_ciphertext_handle(record_id)
        except LookupError:
            return _not_found(record_id)
        return web.json_response({"handle": handle})

    async def _handle_tx(self, request: web.Request) -> web.Response:
        hotkey, denied = self._authorize(request, "tx/{id}")
        if denied is not None:
            return denied
        tx_id = request.match_info["tx_id"]
        tx = self.ledger.get_tx(tx_id)
        if tx is None:
            return web.json_response({"error": "not_found", "tx_id": tx_id}, status=404)
        receipt = tx.receipt()
        if receipt is None:
            return web.json_response({"tx_id": tx_id, "status": "pending"})
        self.ledger.forget_tx(tx_id)
        return web.json_response({
            "tx_id": tx_id,
            "status": "confirmed" if receipt.ok else "failed",
            "reason": receipt.reason,
        })

    # -- Write routes --

    async def _handle_create(self, request: web.Request) -> web.Response:
        hotkey, denied = self._authorize(request, "records[create]")
        if denied is not None:
            return denied
        try:
            body = await request.json()
            args = (
                str(body["record_id"]),
                str(body["title"]),
                bytes.fromhex(body["ciphertext"]),
                bytes.fromhex(body["proof"]),
                int(body["read_time"]),
                int(body["seed"]),
                str(body.get("metadata", "")),
            )
        except (KeyError, TypeError, ValueError) as e:
            return web.json_response({"error": f"invalid_body: {e}"}, status=400)

        try:
            tx = await self.ledger.create(*args, sender=hotkey)
        except Exception as e:
            bt.logging.info({"gateway_request": {"endpoint": "records[create]", "hotkey": _hk(hotkey), "status": 409, "reason": str(e)}})
            return web.json_response({"error": "reverted", "reason": str(e)}, status=409)

        bt.logging.info({"gateway_request": {"endpoint": "records[create]", "hotkey": _hk(hotkey), "status": 202, "record_id": args[0]}})
        return web.json_response({"tx_id": tx.tx_id}, status=202)

    async def _handle_verify(self, request: web.Request) -> web.Response:
        hotkey, denied = self._authorize(request, "records/{id}/verify")
        if denied is not None:
            return denied
        record_id = request.match_info["record_id"]
        try:
            body = await request.json()
            clear_encoding = str(body["clear_encoding"])
            proof = str(body["proof"])
        except (KeyError, TypeError, ValueError) as e:
            return web.json_response({"error": f"invalid_body: {e}"}, status=400)

        try:
            tx = await self.ledger.submit_verification(record_id, clear_encoding, proof, sender=hotkey)
        except LookupError:
            return _not_found(record_id)
        except Exception as e:
            bt.logging.info({"gateway_request": {"endpoint": "records/{id}/verify", "hotkey": _hk(hotkey), "status": 409, "reason": str(e)}})
            return web.json_response({"error": "reverted", "reason": str(e)}, status=409)

        return web.json_response({"tx_id": tx.tx_id}, status=202)


__all__ = ["RecordGatewayServer"]
