"""
FileMessageStore — durable queue on the local filesystem.

Data layout:
  {base_dir}/
    pending/{id}.json    waiting for delivery (maybe not yet due)
    work/{id}.json       claimed by exactly one worker
    dlq/{id}.json        dead-lettered, kept for postmortem inspection

Features:
  - Survives process restarts; every record is a complete JSON document
  - Writes go to a hidden temp file, are fsynced, then renamed into place,
    so a reader never sees a partial record
  - Claims are a single os.rename(pending → work); the process whose rename
    succeeds owns the message, a FileNotFoundError means someone else won
  - Updates to an in-flight record are written in work/ first and then moved
    with one rename, so a record is never in two directories at once

Single host only: rename is atomic within one filesystem, not across hosts.
"""
from __future__ import annotations

import json
import os
import structlog
from pathlib import Path
from typing import Any, Callable, Optional

from job_queue.errors import MessageNotFoundError
from job_queue.retry_policy import RetryPolicy
from job_queue.store_base import BaseMessageStore
from models.schemas import ClaimedMessage, QueueMessage, QueueStats, RetryAction, RetryDecision

logger = structlog.get_logger()

_SUFFIX = ".json"


class FileMessageStore(BaseMessageStore):
    """
    Three-directory state machine: pending / work / dlq.

    Safe for any number of claimers in one or several processes on the same
    host. Storage errors other than a lost race (permissions, full disk)
    propagate as OSError.
    """

    def __init__(
        self,
        base_dir: str = "./var/queue",
        policy: RetryPolicy = None,
        clock: Callable[[], float] = None,
        pending_dir: str = "pending",
        work_dir: str = "work",
        dlq_dir: str = "dlq",
    ):
        super().__init__(policy, clock)
        self.base_dir = Path(base_dir)
        self.pending_dir = self.base_dir / pending_dir
        self.work_dir = self.base_dir / work_dir
        self.dlq_dir = self.base_dir / dlq_dir
        for d in (self.pending_dir, self.work_dir, self.dlq_dir):
            d.mkdir(parents=True, exist_ok=True)
        logger.info("file_queue_initialized", base_dir=str(self.base_dir))

    @classmethod
    def from_config(cls, queue_config, clock: Callable[[], float] = None) -> FileMessageStore:
        return cls(
            base_dir=queue_config.base_dir,
            policy=RetryPolicy.from_config(queue_config),
            clock=clock,
            pending_dir=queue_config.pending_dir,
            work_dir=queue_config.work_dir,
            dlq_dir=queue_config.dlq_dir,
        )

    # ── Paths / IO ────────────────────────────────────────

    @staticmethod
    def _key(path: Path) -> str:
        return path.name[: -len(_SUFFIX)]

    def _path(self, directory: Path, key: str) -> Path:
        return directory / f"{key}{_SUFFIX}"

    def _scan(self, directory: Path) -> list[Path]:
        # sorted() gives a deterministic, lexicographic claim order
        return sorted(directory.glob(f"*{_SUFFIX}"))

    def _write_atomic(self, path: Path, content: str):
        """Write content next to `path`, fsync, then rename over it."""
        tmp_path = path.with_name(f".{path.name}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)

    @staticmethod
    def _read(path: Path) -> Optional[QueueMessage]:
        """Returns None for corrupt content; FileNotFoundError propagates."""
        return QueueMessage.parse(path.read_bytes())

    @staticmethod
    def _move(src: Path, dst: Path) -> bool:
        """Atomic move. False when `src` is already gone (another claimer took it)."""
        try:
            os.rename(src, dst)
            return True
        except FileNotFoundError:
            return False

    # ── Admit ─────────────────────────────────────────────

    def put_pending(self, message: QueueMessage) -> str:
        self._write_atomic(self._path(self.pending_dir, message.id), message.to_json())
        return message.id

    # ── Claim ─────────────────────────────────────────────

    def claim_next(self) -> Optional[ClaimedMessage]:
        now = self.clock()
        for path in self._scan(self.pending_dir):
            key = self._key(path)
            try:
                message = self._read(path)
            except FileNotFoundError:
                continue  # claimed by someone else between scan and read

            if message is None:
                if self._move(path, self._path(self.dlq_dir, key)):
                    logger.warning("queue_corrupt_message_dead_lettered", key=key)
                continue

            if not message.is_due(now):
                continue

            # Stamp the claim time before the move: rename keeps the mtime, so
            # the record never sits in work/ with a stale lease for recover_stale()
            work_path = self._path(self.work_dir, key)
            try:
                os.utime(path, (now, now))
            except FileNotFoundError:
                logger.debug("queue_claim_race_lost", key=key)
                continue
            if not self._move(path, work_path):
                logger.debug("queue_claim_race_lost", key=key)
                continue

            # Re-read: the record may have been rescheduled between read and rename
            try:
                claimed = self._read(work_path)
            except FileNotFoundError:
                logger.debug("queue_claim_race_lost", key=key)
                continue
            if claimed is None:
                self._move(work_path, self._path(self.dlq_dir, key))
                logger.warning("queue_corrupt_message_dead_lettered", key=key)
                continue
            if not claimed.is_due(now):
                self._move(work_path, path)
                continue

            logger.debug("queue_message_claimed", key=key, attempts=claimed.attempts)
            return ClaimedMessage(key=key, message=claimed)
        return None

    # ── Finalize ──────────────────────────────────────────

    def ack(self, handle: ClaimedMessage) -> None:
        try:
            self._path(self.work_dir, handle.key).unlink()
        except FileNotFoundError:
            raise MessageNotFoundError(handle.key) from None

    def reschedule(self, handle: ClaimedMessage, error: str) -> RetryDecision:
        work_path = self._path(self.work_dir, handle.key)
        try:
            message = self._read(work_path)
        except FileNotFoundError:
            raise MessageNotFoundError(handle.key) from None

        if message is None:
            self.dead_letter(handle)
            logger.warning("queue_corrupt_message_dead_lettered", key=handle.key)
            return RetryDecision(action=RetryAction.DEAD_LETTER, attempts=handle.message.attempts)

        decision = self._record_failure(message, error)
        self._write_atomic(work_path, message.to_json())

        if decision.action == RetryAction.DEAD_LETTER:
            os.rename(work_path, self._path(self.dlq_dir, handle.key))
        else:
            os.rename(work_path, self._path(self.pending_dir, handle.key))
        return decision

    def dead_letter(self, handle: ClaimedMessage) -> None:
        dlq_path = self._path(self.dlq_dir, handle.key)
        if self._move(self._path(self.work_dir, handle.key), dlq_path):
            return
        if dlq_path.exists():
            return  # already terminal
        raise MessageNotFoundError(handle.key)

    # ── Inspection / recovery ─────────────────────────────

    def stats(self) -> QueueStats:
        return QueueStats(
            pending=len(self._scan(self.pending_dir)),
            in_flight=len(self._scan(self.work_dir)),
            dead_letter=len(self._scan(self.dlq_dir)),
        )

    def dead_letters(self) -> list[dict[str, Any]]:
        records = []
        for path in self._scan(self.dlq_dir):
            raw = path.read_text(encoding="utf-8", errors="replace")
            try:
                content = json.loads(raw)
            except json.JSONDecodeError:
                content = None
            if isinstance(content, dict):
                records.append({"key": self._key(path), "corrupt": False, "message": content})
            else:
                records.append({"key": self._key(path), "corrupt": True, "raw": raw})
        return records

    def recover_stale(self, max_age_seconds: float) -> int:
        cutoff = self.clock() - max_age_seconds
        recovered = 0
        for path in self._scan(self.work_dir):
            try:
                if path.stat().st_mtime > cutoff:
                    continue
                message = self._read(path)
            except FileNotFoundError:
                continue  # finalized meanwhile
            key = self._key(path)
            if message is None:
                self._move(path, self._path(self.dlq_dir, key))
                logger.warning("queue_corrupt_message_dead_lettered", key=key)
                recovered += 1
                continue
            try:
                decision = self.reschedule(
                    ClaimedMessage(key=key, message=message), "in-flight lease expired"
                )
            except MessageNotFoundError:
                continue  # its worker finished after all
            logger.warning("queue_stale_message_recovered",
                           key=key,
                           attempts=decision.attempts,
                           action=decision.action.value)
            recovered += 1
        return recovered
