"""
Admin endpoints — bot policy hot-reload and decision inspection.

  GET    /admin/bot-policy                current policy
  PUT    /admin/bot-policy                replace policy (validated; 422 leaves the old one live)
  GET    /admin/decisions                 most recent audit records, newest first (?ip=, ?category=)
  GET    /admin/decisions/export          download as JSON or CSV (?format=json|csv)
  DELETE /admin/decisions                 clear the in-memory decision log
  GET    /admin/analytics                 counts by category / action / IP / day over the recent window
  POST   /admin/behavior-cache/purge      drop expired timing windows now

All routes require the admin API key.
"""

import csv
import io
import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response, StreamingResponse

from app.core.audit import AuditRecord
from app.core.gate import TrafficGate
from app.core.policy_config import BotPolicyConfig
from app.middleware.auth import require_admin_key

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_key)])

EXPORT_LIMIT = 1000

CSV_COLUMNS = [
    "timestamp", "ip", "user_agent_hash", "user_agent", "path",
    "is_bot", "authorized", "confidence", "category", "reasons",
    "action", "rule", "redirect_target", "bypass",
]


def get_gate(request: Request) -> TrafficGate:
    return request.app.state.gate


def _policy_payload(policy: BotPolicyConfig) -> dict:
    data = policy.model_dump(mode="json")
    # Stable output for sets
    for key, value in data.items():
        if isinstance(value, list) and key != "exempt_path_prefixes":
            data[key] = sorted(value)
    return data


def _csv_row(record: AuditRecord) -> list:
    data = record.as_dict()
    verdict, decision = data["verdict"], data["decision"]
    return [
        data["timestamp"],
        data["identity"]["ip"],
        data["identity"]["user_agent_hash"],
        data["user_agent"] or "",
        data["path"],
        verdict["is_bot"],
        verdict["authorized"],
        verdict["confidence"],
        verdict["category"],
        "; ".join(verdict["reasons"]),
        decision["action"],
        decision["rule"],
        decision["redirect_target"] or "",
        data["bypass"],
    ]


def _iter_csv(records: list[AuditRecord]):
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for record in records:
        writer.writerow(_csv_row(record))
        yield buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)
    # Header-only export
    if buffer.getvalue():
        yield buffer.getvalue()


@router.get("/bot-policy")
async def get_bot_policy(gate: TrafficGate = Depends(get_gate)):
    return {"policy": _policy_payload(gate.policy)}


@router.put("/bot-policy")
async def update_bot_policy(
    policy: BotPolicyConfig,
    request: Request,
    gate: TrafficGate = Depends(get_gate),
):
    mounted = getattr(request.app.state, "paywall_path", gate.policy.paywall_path)
    if policy.paywall_path != mounted:
        # The landing route is mounted once at startup
        raise HTTPException(
            status_code=422,
            detail=f"paywall_path is fixed at startup ({mounted}); set TG_PAYWALL_PATH and restart to move it.",
        )

    previous = gate.policy_store.replace(policy)
    logger.info("bot_policy_updated",
                enabled=policy.enabled,
                threshold=policy.confidence_threshold,
                previous_threshold=previous.confidence_threshold,
                paywall_path=policy.paywall_path)
    return {"success": True, "policy": _policy_payload(policy)}


@router.get("/decisions")
async def list_decisions(
    limit: int = Query(default=100, ge=1, le=1000),
    ip: str | None = Query(default=None),
    category: str | None = Query(default=None),
    gate: TrafficGate = Depends(get_gate),
):
    records = gate.memory_sink.recent(limit, ip=ip.strip() if ip else None, category=category)
    return {"count": len(records), "decisions": [r.as_dict() for r in records]}


@router.get("/decisions/export")
async def export_decisions(
    format: str = Query(default="json", pattern="^(json|csv)$"),
    gate: TrafficGate = Depends(get_gate),
):
    records = gate.memory_sink.recent(EXPORT_LIMIT)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    logger.info("decisions_exported", format=format, count=len(records))

    if format == "csv":
        return StreamingResponse(
            _iter_csv(records),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f"attachment; filename=bot_decisions_{stamp}.csv"},
        )
    return Response(
        content=json.dumps({"count": len(records), "decisions": [r.as_dict() for r in records]}),
        media_type="application/json",
        headers={"Content-Disposition": f"attachment; filename=bot_decisions_{stamp}.json"},
    )


@router.delete("/decisions")
async def clear_decisions(gate: TrafficGate = Depends(get_gate)):
    cleared = gate.memory_sink.clear()
    logger.info("decisions_cleared", cleared=cleared)
    return {"success": True, "cleared": cleared}


@router.get("/analytics")
async def analytics(gate: TrafficGate = Depends(get_gate)):
    summary = gate.memory_sink.summary()
    summary["tracked_identities"] = len(gate.behavior_cache)
    return {"analytics": summary}


@router.post("/behavior-cache/purge")
async def purge_behavior_cache(gate: TrafficGate = Depends(get_gate)):
    removed = gate.behavior_cache.purge_expired()
    logger.info("behavior_cache_purged", removed=removed)
    return {"removed": removed, "remaining": len(gate.behavior_cache)}
