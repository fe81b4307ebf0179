import time
import logging
import requests
from typing import Optional, Dict, Any, Tuple

from .forensics import EvidenceStore, iso_timestamp
from .core.classifier import SENTINEL_STATUS

logger = logging.getLogger("uasf.http")

# Response bodies beyond this are truncated so one response cannot exhaust the disk.
MAX_BODY_BYTES = 10 * 1024 * 1024
CONNECT_TIMEOUT = 10.0
CHUNK_SIZE = 64 * 1024

DEFAULT_USER_AGENT = "UASF/1.0.0 (authorized attack simulation)"


class RequestExecutor:
    """
    Sends one HTTP request at a time and records both sides of it as evidence.

    The caller has already checked the URL against the scope guard. Transport
    failures (refused connection, DNS, timeout) never raise: they come back as
    status 0 so the classifier can mark the attempt INCONCLUSIVE.
    """

    def __init__(self, evidence: EvidenceStore, timeout: float = 30.0,
                 session: Optional[requests.Session] = None,
                 max_body_bytes: int = MAX_BODY_BYTES):
        self.evidence = evidence
        self.timeout = timeout
        self.max_body_bytes = max_body_bytes
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": DEFAULT_USER_AGENT})

    def execute(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
                body: Optional[str] = None, timeout: Optional[float] = None,
                context: Optional[Dict[str, Any]] = None) -> Tuple[int, str, str]:
        """Returns (status_code, response_body, evidence_record_id)."""
        method = method.upper()
        headers = dict(headers or {})
        body = body or ""
        read_timeout = timeout or self.timeout

        record_id = self.evidence.new_record_id()

        # 1. Request record goes to disk before anything is sent
        self.evidence.write_request(record_id, {
            "id": record_id,
            "timestamp": iso_timestamp(),
            "method": method,
            "url": url,
            "headers": headers,
            "body": body,
            "context": context or {},
        })

        logger.info(f"Executing: {method} {url}")

        # 2. Send
        start_time = time.time()
        status_code = SENTINEL_STATUS
        reason = ""
        resp_headers: Dict[str, str] = {}
        text = ""
        truncated = False
        error = None
        try:
            resp = self.session.request(
                method=method,
                url=url,
                headers=headers,
                data=body.encode("utf-8") if body else None,
                timeout=(min(CONNECT_TIMEOUT, read_timeout), read_timeout),
                allow_redirects=False,
                stream=True,
            )
            try:
                raw, truncated = self._read_capped(resp)
            finally:
                resp.close()
            status_code = resp.status_code
            reason = resp.reason or ""
            resp_headers = dict(resp.headers)
            text = raw.decode(resp.encoding or "utf-8", errors="replace")
        except requests.RequestException as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning(f"Transport failure for {method} {url}: {error}")
        except LookupError as e:
            # Server announced a charset Python does not know
            text = raw.decode("utf-8", errors="replace")
            logger.debug(f"Unknown response encoding, decoded as utf-8: {e}")
        except ValueError as e:
            # http.client refuses non Latin-1 header values and control characters before sending
            status_code = SENTINEL_STATUS
            error = f"{type(e).__name__}: {e}"
            logger.warning(f"Request could not be sent for {method} {url}: {error}")

        elapsed = (time.time() - start_time) * 1000.0

        if truncated:
            logger.warning(f"Response body exceeded {self.max_body_bytes} bytes and was truncated: {url}")

        # 3. Response record
        self.evidence.write_response(record_id, {
            "id": record_id,
            "timestamp": iso_timestamp(),
            "status_code": status_code,
            "reason": reason,
            "headers": resp_headers,
            "body": text,
            "body_truncated": truncated,
            "elapsed_ms": round(elapsed, 1),
            "error": error,
        })

        return status_code, text, record_id

    def _read_capped(self, resp: requests.Response) -> Tuple[bytes, bool]:
        buf = bytearray()
        for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
            if not chunk:
                continue
            room = self.max_body_bytes - len(buf)
            if len(chunk) > room:
                buf.extend(chunk[:room])
                return bytes(buf), True
            buf.extend(chunk)
        return bytes(buf), False

    def close(self):
        self.session.close()
