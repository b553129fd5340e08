"""
Traffic gate — wires resolver, detector, policy and audit together.

One TrafficGate per process (app.state.gate). The middleware hands it a
framework-neutral request description and gets back the identity, the
verdict and the decision; the audit write is already scheduled by then.
"""

from collections.abc import Mapping
from dataclasses import dataclass

from app.config import Settings
from app.core.access_policy import PolicyDecision, decide, has_valid_bypass
from app.core.audit import (
    AuditEmitter,
    AuditRecord,
    AuditSink,
    CompositeAuditSink,
    LogAuditSink,
    MemoryAuditSink,
    SqlAuditSink,
)
from app.core.behavior import BehaviorCache, TimingAnalyzer
from app.core.bot_detection import BotDetector, Verdict
from app.core.identity import ClientIdentity, build_identity, resolve_client_ip
from app.core.policy_config import BotPolicyConfig, PolicyStore
from app.core.signals import RequestSignals


def build_behavior_cache(settings: Settings, clock=None) -> BehaviorCache:
    kwargs = {"clock": clock} if clock is not None else {}
    return BehaviorCache(
        window_size=settings.behavior_window_size,
        ttl_seconds=settings.behavior_ttl_seconds,
        max_entries=settings.behavior_max_entries,
        sweep_interval=settings.behavior_sweep_interval_seconds,
        **kwargs,
    )


@dataclass(frozen=True)
class GateResult:
    identity: ClientIdentity
    verdict: Verdict
    decision: PolicyDecision
    bypass: bool


class TrafficGate:
    def __init__(
        self,
        settings: Settings,
        policy_store: PolicyStore | None = None,
        detector: BotDetector | None = None,
        memory_sink: MemoryAuditSink | None = None,
        extra_sinks: list[AuditSink] | None = None,
    ):
        self.settings = settings
        # Empty caches and sinks are falsy (__len__)
        if policy_store is None:
            policy_store = PolicyStore(BotPolicyConfig.from_settings(settings))
        if detector is None:
            detector = BotDetector(TimingAnalyzer(build_behavior_cache(settings)))
        if memory_sink is None:
            memory_sink = MemoryAuditSink(maxlen=settings.audit_memory_size)
        self.policy_store = policy_store
        self.detector = detector
        self.memory_sink = memory_sink
        sinks: list[AuditSink] = [LogAuditSink(), self.memory_sink, *(extra_sinks or [])]
        self.emitter = AuditEmitter(CompositeAuditSink(sinks))

    @property
    def policy(self) -> BotPolicyConfig:
        return self.policy_store.get()

    @property
    def behavior_cache(self) -> BehaviorCache:
        return self.detector.analyzer.cache

    def evaluate(
        self,
        path: str,
        headers: Mapping[str, str],
        cookies: Mapping[str, str],
        peer: str | None = None,
        query: str = "",
        now: float | None = None,
    ) -> GateResult:
        config = self.policy
        lowered = {k.lower(): v for k, v in headers.items()}

        ip = resolve_client_ip(lowered, peer)
        user_agent = lowered.get("user-agent")
        identity = build_identity(ip, user_agent)
        signals = RequestSignals(
            user_agent=user_agent,
            ip=ip,
            path=path,
            timestamp=now,
            headers=lowered,
        )

        verdict = self.detector.classify(signals, config, identity=identity)
        bypass = has_valid_bypass(
            cookies,
            lowered,
            self.settings.bypass_token,
            cookie_name=self.settings.bypass_cookie_name,
            header_name=self.settings.bypass_header_name,
        )
        decision = decide(
            verdict,
            path,
            bypass,
            config,
            return_url=f"{path}?{query}" if query else path,
            client_ip=ip,
        )

        self.emitter.emit(AuditRecord(
            identity=identity,
            verdict=verdict,
            decision=decision,
            path=path,
            user_agent=user_agent,
            bypass=bypass,
        ))
        return GateResult(identity=identity, verdict=verdict, decision=decision, bypass=bypass)


def build_gate(settings: Settings) -> TrafficGate:
    extra: list[AuditSink] = []
    if settings.audit_sql_enabled:
        from app.models.database import get_session_maker

        extra.append(SqlAuditSink(get_session_maker()))
    return TrafficGate(settings, extra_sinks=extra)
