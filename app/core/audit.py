"""
Decision audit trail.

Every classified request produces one AuditRecord:
  { identity, verdict, decision, timestamp, path } (+ user_agent, bypass)

Sinks:
  - LogAuditSink       structlog event "bot_decision"
  - MemoryAuditSink    bounded ring, backs /admin/decisions and /admin/analytics
  - SqlAuditSink       append-only insert into bot_decision_logs
  - CompositeAuditSink fan-out; one failing sink doesn't starve the others

AuditEmitter.emit() is fire-and-forget: the write runs as a background
task after the decision is made. A slow or broken sink can't delay or
change an access decision; failures are logged and dropped.
"""

import asyncio
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from app.core.access_policy import PolicyDecision
from app.core.bot_detection import Verdict
from app.core.identity import ClientIdentity

logger = structlog.get_logger()

MAX_UA_LENGTH = 500


@dataclass(frozen=True)
class AuditRecord:
    identity: ClientIdentity
    verdict: Verdict
    decision: PolicyDecision
    path: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    user_agent: str | None = None
    bypass: bool = False

    def as_dict(self) -> dict:
        return {
            "identity": {"ip": self.identity.ip, "user_agent_hash": self.identity.user_agent_hash},
            "verdict": self.verdict.as_dict(),
            "decision": self.decision.as_dict(),
            "timestamp": self.timestamp.isoformat(),
            "path": self.path,
            "user_agent": self.user_agent[:MAX_UA_LENGTH] if self.user_agent else None,
            "bypass": self.bypass,
        }


class AuditSink:
    async def write(self, record: AuditRecord) -> None:
        raise NotImplementedError


class LogAuditSink(AuditSink):
    async def write(self, record: AuditRecord) -> None:
        logger.info(
            "bot_decision",
            ip=record.identity.ip,
            path=record.path,
            category=record.verdict.as_dict()["category"],
            confidence=record.verdict.confidence,
            is_bot=record.verdict.is_bot,
            action=record.decision.action.value,
            rule=record.decision.rule,
            reasons=record.verdict.reasons,
        )


class MemoryAuditSink(AuditSink):
    """Newest-last ring of the most recent records."""

    def __init__(self, maxlen: int = 1000):
        self._records: deque[AuditRecord] = deque(maxlen=maxlen)

    async def write(self, record: AuditRecord) -> None:
        self._records.append(record)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def maxlen(self) -> int:
        return self._records.maxlen

    def recent(self, limit: int = 100, ip: str | None = None, category: str | None = None) -> list[AuditRecord]:
        """Newest first, optionally narrowed to one client IP and/or verdict category."""
        if limit <= 0:
            return []
        matched = []
        for record in reversed(self._records):
            if ip is not None and record.identity.ip != ip:
                continue
            if category is not None and record.verdict.as_dict()["category"] != category:
                continue
            matched.append(record)
            if len(matched) >= limit:
                break
        return matched

    def clear(self) -> int:
        """Drop every record. Returns how many were dropped."""
        removed = len(self._records)
        self._records.clear()
        return removed

    def summary(self, top_n: int = 10) -> dict:
        records = list(self._records)
        ips = Counter(r.identity.ip for r in records)
        return {
            "total_requests": len(records),
            "unique_ips": len(ips),
            "bot_count": sum(1 for r in records if r.verdict.is_bot),
            "human_count": sum(1 for r in records if not r.verdict.is_bot),
            "bypass_count": sum(1 for r in records if r.bypass),
            "categories": dict(Counter(r.verdict.as_dict()["category"] for r in records)),
            "actions": dict(Counter(r.decision.action.value for r in records)),
            "paths": dict(Counter(r.path for r in records).most_common(top_n)),
            "top_ips": [{"ip": ip, "count": n} for ip, n in ips.most_common(top_n)],
            "daily": dict(sorted(Counter(r.timestamp.date().isoformat() for r in records).items())),
        }


class SqlAuditSink(AuditSink):
    """Append-only writes to bot_decision_logs."""

    def __init__(self, session_maker):
        self._session_maker = session_maker

    async def write(self, record: AuditRecord) -> None:
        from app.models.tables import BotDecisionLog

        verdict = record.verdict.as_dict()
        async with self._session_maker() as session:
            session.add(BotDecisionLog(
                decided_at=record.timestamp,
                ip_address=record.identity.ip[:64],
                user_agent_hash=record.identity.user_agent_hash,
                user_agent=record.user_agent[:MAX_UA_LENGTH] if record.user_agent else None,
                path=record.path[:2048],
                is_bot=record.verdict.is_bot,
                authorized=record.verdict.authorized,
                confidence=record.verdict.confidence,
                category=verdict["category"],
                reasons=verdict["reasons"],
                action=record.decision.action.value,
                rule=record.decision.rule,
                redirect_target=record.decision.redirect_target,
                bypass=record.bypass,
            ))
            await session.commit()


class CompositeAuditSink(AuditSink):
    def __init__(self, sinks: list[AuditSink]):
        self.sinks = list(sinks)

    async def write(self, record: AuditRecord) -> None:
        for sink in self.sinks:
            try:
                await sink.write(record)
            except Exception as e:
                logger.error("audit_sink_failed", sink=type(sink).__name__, error=str(e))


class AuditEmitter:
    """Schedules sink writes off the request path and keeps the tasks alive."""

    def __init__(self, sink: AuditSink):
        self.sink = sink
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def emit(self, record: AuditRecord) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("audit_dropped_no_loop", path=record.path)
            return
        task = loop.create_task(self._write(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, record: AuditRecord) -> None:
        try:
            await self.sink.write(record)
        except Exception as e:
            logger.error("audit_sink_failed", sink=type(self.sink).__name__, error=str(e))

    async def drain(self) -> None:
        """Wait for in-flight writes (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
