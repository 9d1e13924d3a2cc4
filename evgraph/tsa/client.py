"""
Trusted timestamp authority (TSA) client.

Only the contract is fixed here: submit a hash, get back an opaque token
plus the authority's time, verify the token later. Two authorities ship
with the package:

  - HttpTimestampAuthority: small JSON-over-HTTP client (stdlib urllib).
  - LocalTimestampAuthority: HMAC-signed tokens for offline use and tests.

Event timestamping runs on a background executor so ingestion never
waits on an external authority.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..errors import WitnessUnavailableError
from ..graph.nodes import Event
from ..graph.records import MerkleAnchor, TimestampSubject, TsaTimestamp, WitnessRecord
from ..graph.store import EvidenceStore
from ..util import new_id, parse_timestamp, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TsaToken:
    response: str
    tsa_time: datetime
    provider: str
    algorithm: str = "SHA-256"


class TimestampAuthority(Protocol):
    name: str

    def timestamp(self, hash_hex: str) -> TsaToken:
        ...

    def verify(self, hash_hex: str, token: TsaToken) -> bool:
        ...


class LocalTimestampAuthority:
    """HMAC-SHA256 signed tokens. The key never leaves the process."""

    def __init__(self, key: bytes | str, name: str = "local-tsa"):
        self._key = key.encode("utf-8") if isinstance(key, str) else key
        if not self._key:
            raise ValueError("LocalTimestampAuthority needs a non-empty key")
        self.name = name

    def _sign(self, hash_hex: str, tsa_time: str, nonce: str) -> str:
        message = f"{hash_hex}|{tsa_time}|{nonce}".encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def timestamp(self, hash_hex: str) -> TsaToken:
        now = utc_now()
        nonce = os.urandom(8).hex()
        body = {
            "hash": hash_hex,
            "time": now.isoformat(),
            "nonce": nonce,
            "sig": self._sign(hash_hex, now.isoformat(), nonce),
        }
        response = base64.b64encode(json.dumps(body, sort_keys=True).encode("utf-8")).decode("ascii")
        return TsaToken(response=response, tsa_time=now, provider=self.name)

    def verify(self, hash_hex: str, token: TsaToken) -> bool:
        try:
            body = json.loads(base64.b64decode(token.response.encode("ascii")))
        except (ValueError, TypeError):
            return False
        if body.get("hash") != hash_hex:
            return False
        expected = self._sign(hash_hex, str(body.get("time")), str(body.get("nonce")))
        return hmac.compare_digest(expected, str(body.get("sig", "")))


@dataclass(frozen=True)
class TsaHttpConfig:
    url: str
    token: str | None = None
    timeout_s: float = 10.0
    name: str = "http-tsa"


class HttpTimestampAuthority:
    """
    JSON TSA endpoint.

      POST {url}          {"hash", "algorithm"}  -> {"token", "time"}
      POST {url}/verify   {"hash", "token"}      -> {"valid"}
    """

    def __init__(self, cfg: TsaHttpConfig):
        self._cfg = cfg
        self.name = cfg.name

    def _post(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._cfg.token:
            headers["Authorization"] = f"Bearer {self._cfg.token}"
        req = Request(url, data=json.dumps(body).encode("utf-8"), method="POST", headers=headers)
        try:
            with urlopen(req, timeout=self._cfg.timeout_s) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")
            raise WitnessUnavailableError(f"TSA HTTP {e.code} from {url}: {detail}") from e
        except (URLError, TimeoutError, OSError) as e:
            raise WitnessUnavailableError(f"TSA unreachable at {url}: {e}") from e
        except ValueError as e:
            raise WitnessUnavailableError(f"TSA returned invalid JSON from {url}") from e

    def timestamp(self, hash_hex: str) -> TsaToken:
        payload = self._post(self._cfg.url, {"hash": hash_hex, "algorithm": "SHA-256"})
        token = payload.get("token")
        tsa_time = payload.get("time")
        if not isinstance(token, str) or not tsa_time:
            raise WitnessUnavailableError("TSA response missing token or time")
        return TsaToken(response=token, tsa_time=parse_timestamp(str(tsa_time)), provider=self.name)

    def verify(self, hash_hex: str, token: TsaToken) -> bool:
        payload = self._post(self._cfg.url.rstrip("/") + "/verify", {"hash": hash_hex, "token": token.response})
        return bool(payload.get("valid"))


class TimestampAuthorityClient:
    """Requests timestamps and records them in the store."""

    def __init__(self, authority: TimestampAuthority, store: EvidenceStore | None = None):
        self.authority = authority
        self.store = store

    def timestamp(
        self,
        hash_hex: str,
        *,
        subject_type: TimestampSubject = TimestampSubject.EVENT,
        subject_id: str | None = None,
    ) -> TsaTimestamp:
        token = self.authority.timestamp(hash_hex)
        record = TsaTimestamp(
            timestamp_id=new_id("TSA"),
            subject_type=subject_type,
            subject_id=subject_id or hash_hex,
            hash_timestamped=hash_hex,
            tsa_response=token.response,
            tsa_time=token.tsa_time,
            tsa_provider=token.provider,
            tsa_algorithm=token.algorithm,
        )
        if self.store is not None:
            self.store.save_timestamp(record)
        return record

    def verify(self, record: TsaTimestamp) -> bool:
        token = TsaToken(
            response=record.tsa_response,
            tsa_time=record.tsa_time,
            provider=record.tsa_provider,
            algorithm=record.tsa_algorithm,
        )
        return self.authority.verify(record.hash_timestamped, token)

    def timestamp_event(self, event: Event) -> TsaTimestamp:
        return self.timestamp(event.payload_hash, subject_type=TimestampSubject.EVENT, subject_id=event.event_id)


class TsaWitnessProvider:
    """Use a timestamp authority as a Merkle-root witness."""

    def __init__(self, client: TimestampAuthorityClient):
        self.client = client
        self.name = client.authority.name

    def witness(self, root: str, anchor: MerkleAnchor) -> WitnessRecord:
        record = self.client.timestamp(root, subject_type=TimestampSubject.ANCHOR, subject_id=anchor.anchor_id)
        return WitnessRecord(
            provider=self.name,
            reference=record.timestamp_id,
            witnessed_at=record.tsa_time,
            proof={"tsa_response": record.tsa_response, "algorithm": record.tsa_algorithm},
        )


class TimestampQueue:
    """Background executor for event timestamp requests."""

    def __init__(self, client: TimestampAuthorityClient, max_workers: int = 2):
        self.client = client
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="evgraph-tsa")

    def submit(self, event: Event) -> Future:
        future = self._executor.submit(self.client.timestamp_event, event)
        future.add_done_callback(lambda f, eid=event.event_id: self._log_failure(f, eid))
        return future

    @staticmethod
    def _log_failure(future: Future, event_id: str) -> None:
        error = future.exception()
        if error is not None:
            logger.warning("Timestamp request for %s failed: %s", event_id, error)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
