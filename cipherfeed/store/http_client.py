"""HTTP-based RecordStore client for a remote record gateway.

Handles challenge-response authentication automatically, caches bearer
tokens, and polls transaction status until a write settles.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any

import bittensor as bt
import httpx

from .interface import StoredRecord, TxReceipt


class GatewayError(RuntimeError):
    """The gateway refused a request. ``reason`` carries its explanation."""

    def __init__(self, message: str, reason: str = "", status: int = 0):
        super().__init__(f"{message}: {reason}" if reason else message)
        self.reason = reason
        self.status = status


class HTTPTxHandle:
    """TxHandle that polls ``/tx/{tx_id}`` until the write is mined."""

    def __init__(self, store: HTTPRecordStore, tx_id: str):
        self.store = store
        self.tx_id = tx_id

    async def await_confirmation(self) -> TxReceipt:
        while True:
            resp = await self.store._get(f"/tx/{self.tx_id}")
            if resp.status_code == 404:
                return TxReceipt(ok=False, tx_id=self.tx_id, reason="unknown transaction")
            resp.raise_for_status()
            body = resp.json()
            status = body.get("status")
            if status == "confirmed":
                return TxReceipt(ok=True, tx_id=self.tx_id)
            if status == "failed":
                return TxReceipt(ok=False, tx_id=self.tx_id, reason=body.get("reason", ""))
            await asyncio.sleep(self.store.poll_interval)


class HTTPRecordStore:
    """Caller-side client for reading and writing records through a gateway."""

    def __init__(
        self,
        gateway_url: str,
        wallet: Any,
        timeout: float = 30.0,
        max_retries: int = 3,
        poll_interval: float = 0.5,
    ):
        self.gateway_url = gateway_url.rstrip("/")
        self.wallet = wallet
        self.poll_interval = poll_interval
        self._hotkey = wallet.hotkey.ss58_address
        self._token: str | None = None
        self._token_expires: float = 0.0
        self._client = httpx.AsyncClient(timeout=timeout)
        self._max_retries = max_retries

    async def close(self) -> None:
        await self._client.aclose()

    # -- Auth --

    async def _ensure_auth(self) -> str:
        """Ensure we have a valid bearer token, refreshing if needed."""
        if self._token and time.time() < self._token_expires - 60:
            return self._token

        resp = await self._client.post(
            f"{self.gateway_url}/gateway/auth/challenge",
            json={"hotkey": self._hotkey},
        )
        if resp.status_code != 200:
            raise ConnectionError(f"Auth challenge failed: {resp.status_code} {resp.text}")

        nonce = resp.json()["nonce"]
        signature = self.wallet.hotkey.sign(nonce.encode())
        sig_hex = signature.hex() if isinstance(signature, bytes) else str(signature)

        resp = await self._client.post(
            f"{self.gateway_url}/gateway/auth/respond",
            json={"hotkey": self._hotkey, "nonce": nonce, "signature": sig_hex},
        )
        if resp.status_code != 200:
            raise ConnectionError(f"Auth respond failed: {resp.status_code} {resp.text}")

        self._token = resp.json()["token"]
        self._token_expires = time.time() + 3500
        return self._token

    def _auth_headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> httpx.Response:
        """Authenticated request with retry on transport errors and stale tokens."""
        for attempt in range(self._max_retries):
            try:
                token = await self._ensure_auth()
                resp = await self._client.request(
                    method,
                    f"{self.gateway_url}{path}",
                    json=body,
                    headers=self._auth_headers(token),
                )
                if resp.status_code == 401:
                    self._token = None
                    continue
                return resp
            except httpx.TransportError as e:
                if attempt == self._max_retries - 1:
                    raise
                wait = 2 ** attempt
                bt.logging.warning({"gateway_http_client": {"retry": attempt, "wait": wait, "error": str(e)}})
                await asyncio.sleep(wait)
        raise ConnectionError("Max retries exceeded")

    async def _get(self, path: str) -> httpx.Response:
        return await self._request("GET", path)

    async def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        return await self._request("POST", path, body)

    @staticmethod
    def _raise_for_write(resp: httpx.Response, record_id: str) -> None:
        if resp.status_code == 404:
            raise LookupError(f"Record does not exist: {record_id}")
        if resp.status_code == 409:
            raise GatewayError("write reverted", reason=resp.json().get("reason", ""), status=409)
        if resp.status_code >= 400:
            raise GatewayError("gateway error", reason=resp.text, status=resp.status_code)

    # -- RecordStore interface --

    async def list_ids(self) -> list[str]:
        resp = await self._get("/records")
        resp.raise_for_status()
        return resp.json().get("ids", [])

    async def get(self, record_id: str) -> StoredRecord:
        resp = await self._get(f"/records/{record_id}")
        if resp.status_code == 404:
            raise LookupError(f"Record does not exist: {record_id}")
        resp.raise_for_status()
        body = resp.json()
        return StoredRecord(
            title=body["title"],
            read_time=int(body["read_time"]),
            public_views=int(body["public_views"]),
            created_at=datetime.fromisoformat(body["created_at"]),
            creator=body["creator"],
            verified=bool(body["verified"]),
            decrypted_value=int(body.get("decrypted_value", 0)),
        )

    async def get_ciphertext_handle(self, record_id: str) -> str:
        resp = await self._get(f"/records/{record_id}/handle")
        if resp.status_code == 404:
            raise LookupError(f"Record does not exist: {record_id}")
        resp.raise_for_status()
        return resp.json()["handle"]

    async def create(
        self,
        record_id: str,
        title: str,
        ciphertext: bytes,
        proof: bytes,
        read_time: int,
        seed: int,
        metadata: str,
    ) -> HTTPTxHandle:
        resp = await self._post("/records", {
            "record_id": record_id,
            "title": title,
            "ciphertext": ciphertext.hex(),
            "proof": proof.hex(),
            "read_time": read_time,
            "seed": seed,
            "metadata": metadata,
        })
        self._raise_for_write(resp, record_id)
        return HTTPTxHandle(self, resp.json()["tx_id"])

    async def submit_verification(self, record_id: str, clear_encoding: str, proof: str) -> HTTPTxHandle:
        resp = await self._post(f"/records/{record_id}/verify", {
            "clear_encoding": clear_encoding,
            "proof": proof,
        })
        self._raise_for_write(resp, record_id)
        return HTTPTxHandle(self, resp.json()["tx_id"])

    async def is_available(self) -> bool:
        # /status is public; no token needed
        resp = await self._client.get(f"{self.gateway_url}/status")
        resp.raise_for_status()
        return bool(resp.json().get("available", False))


__all__ = ["GatewayError", "HTTPRecordStore", "HTTPTxHandle"]
