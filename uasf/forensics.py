import hashlib
import json
import glob
import logging
import os
import time
import uuid
import datetime
import itertools
from typing import Any, Dict, Iterator, List, Optional

from .models import EvidenceRecord

logger = logging.getLogger("uasf.forensics")

REQUEST_SUFFIX = "_request.json"
RESPONSE_SUFFIX = "_response.json"


def iso_timestamp(ts: Optional[float] = None) -> str:
    """UTC timestamp in the form 2026-01-31T12:00:00Z."""
    moment = datetime.datetime.fromtimestamp(ts if ts is not None else time.time(), tz=datetime.timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


class EvidenceStore:
    """
    Append-only evidence directory.
    Every request attempt leaves two files behind: <id>_request.json and <id>_response.json.
    Files are created exclusively and never rewritten, so the directory alone is
    enough to recount requests and rebuild results after an abnormal exit.
    """

    def __init__(self, directory: str):
        self.directory = directory
        self._sequence = itertools.count(1)
        os.makedirs(self.directory, exist_ok=True)

    def new_record_id(self) -> str:
        # Timestamp first so ids sort in issue order; sequence, pid and random part keep
        # ids unique when the clock does not move between two requests.
        now = datetime.datetime.now(datetime.timezone.utc)
        return f"{now.strftime('%Y%m%d_%H%M%S_%f')}_{next(self._sequence):06d}_{os.getpid()}_{uuid.uuid4().hex[:8]}"

    def write_request(self, record_id: str, data: Dict[str, Any]) -> str:
        return self._write_once(record_id + REQUEST_SUFFIX, data)

    def write_response(self, record_id: str, data: Dict[str, Any]) -> str:
        return self._write_once(record_id + RESPONSE_SUFFIX, data)

    def _write_once(self, filename: str, data: Dict[str, Any]) -> str:
        path = os.path.join(self.directory, filename)
        # "x" refuses to replace an existing record
        with open(path, "x", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        return path

    def count_requests(self) -> int:
        return len(self._glob(REQUEST_SUFFIX))

    def count_responses(self) -> int:
        return len(self._glob(RESPONSE_SUFFIX))

    def count_files(self) -> int:
        total = 0
        for _, _, files in os.walk(self.directory):
            total += len(files)
        return total

    def record_ids(self) -> List[str]:
        suffix_len = len(REQUEST_SUFFIX)
        return sorted(os.path.basename(p)[:-suffix_len] for p in self._glob(REQUEST_SUFFIX))

    def load(self, record_id: str) -> EvidenceRecord:
        request = self._read(record_id + REQUEST_SUFFIX)
        response = None
        if os.path.exists(os.path.join(self.directory, record_id + RESPONSE_SUFFIX)):
            response = self._read(record_id + RESPONSE_SUFFIX)
        return EvidenceRecord(record_id=record_id, request=request, response=response)

    def iter_records(self) -> Iterator[EvidenceRecord]:
        """Yields records in request-issue order. Unreadable records are logged and skipped."""
        for record_id in self.record_ids():
            try:
                yield self.load(record_id)
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable evidence record {record_id}: {e}")

    def _glob(self, suffix: str) -> List[str]:
        return glob.glob(os.path.join(glob.escape(self.directory), "*" + suffix))

    def _read(self, filename: str) -> Dict[str, Any]:
        with open(os.path.join(self.directory, filename), "r", encoding="utf-8") as f:
            return json.load(f)


class AuditLog:
    """
    Immutable chain-of-custody log for run events.
    Each entry carries the hash of the previous one, so any edit to the
    file breaks the chain from that line on.
    """

    def __init__(self, log_file: str, run_id: Optional[str] = None):
        self.run_id = run_id or str(uuid.uuid4())
        self.log_file = log_file
        self.start_time = time.time()
        self.chain_hash = genesis_hash(self.run_id)

    def log_event(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> str:
        """
        Appends an event and advances the hash chain.
        A failed write is logged; auditing never takes the run down.
        """
        entry = {
            "type": event_type,
            "timestamp": iso_timestamp(),
            "run_id": self.run_id,
            "data": data or {},
            "prev_hash": self.chain_hash,
        }
        self.chain_hash = chain(self.chain_hash, entry)
        entry["current_hash"] = self.chain_hash

        try:
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            logger.warning(f"Audit log write failed ({event_type}): {e}")
        return self.chain_hash

    def seal(self, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Writes a seal entry and returns the values a report can cite."""
        payload = dict(data or {})
        payload["duration_s"] = round(time.time() - self.start_time, 3)
        final_hash = self.log_event("AUDIT_SEAL", payload)
        return {"run_id": self.run_id, "final_hash": final_hash, "audit_file": self.log_file}


def genesis_hash(run_id: str) -> str:
    return hashlib.sha256(run_id.encode()).hexdigest()


def chain(prev_hash: str, entry: Dict[str, Any]) -> str:
    # Hash(Prev_Hash + Current_Entry_Str)
    entry_str = json.dumps(entry, sort_keys=True)
    return hashlib.sha256((prev_hash + entry_str).encode()).hexdigest()


def verify_audit_log(path: str) -> Optional[int]:
    """
    Recomputes the hash chain of an audit log.
    Returns None when the chain is intact, else the 1-based number of the first bad line.
    """
    prev_hash = None
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
                current = entry.pop("current_hash")
            except (ValueError, KeyError):
                return lineno

            if prev_hash is None:
                prev_hash = genesis_hash(entry.get("run_id", ""))
            if entry.get("prev_hash") != prev_hash or chain(prev_hash, entry) != current:
                return lineno
            prev_hash = current
    return None
