"""
Prometheus metrics for the registry installation pipeline.

Low-cardinality only: outcome, status and severity labels. Never ref,
component name or file path, which are unbounded.
"""

from __future__ import annotations

from prometheus_client import Counter
from prometheus_client.registry import CollectorRegistry

FORBIDDEN_LABELS = frozenset({"ref", "component", "path", "file", "url", "signer"})

INDEX_FETCH_OUTCOMES = ("cache", "network", "error")
INTEGRITY_RESULTS = ("verified", "failed", "skipped")


class PipelineMetrics:
    """
    Counters for index fetches, integrity checks, signatures and the audit log.

    Usage:
        registry = CollectorRegistry()
        metrics = PipelineMetrics(registry=registry)
        client = RegistryIndexClient(provider, cache, metrics=metrics)
        # generate_latest(registry) -> bytes in Prometheus text format
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Initialize counters.

        Args:
            registry: Prometheus CollectorRegistry. A private one is created if None.
        """
        self._registry = registry or CollectorRegistry()

        self._index_fetches = Counter(
            "greater_registry_index_fetches",
            "Registry index fetches by outcome",
            ["outcome"],
            registry=self._registry,
        )
        self._integrity_files = Counter(
            "greater_integrity_files",
            "Files processed by integrity verification by result",
            ["result"],
            registry=self._registry,
        )
        self._signature_checks = Counter(
            "greater_signature_checks",
            "Tag signature checks by status",
            ["status"],
            registry=self._registry,
        )
        self._security_warnings = Counter(
            "greater_security_warnings",
            "Security warnings emitted by severity",
            ["severity"],
            registry=self._registry,
        )
        self._audit_rotations = Counter(
            "greater_audit_log_rotations",
            "Audit log rotations",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_index_fetch(self, outcome: str) -> None:
        if outcome not in INDEX_FETCH_OUTCOMES:
            raise ValueError(f"Unknown index fetch outcome: {outcome}")
        self._index_fetches.labels(outcome=outcome).inc()

    def record_integrity(self, verified: int, failed: int, skipped: int) -> None:
        for result, count in zip(INTEGRITY_RESULTS, (verified, failed, skipped), strict=True):
            if count:
                self._integrity_files.labels(result=result).inc(count)

    def record_signature(self, status: str) -> None:
        self._signature_checks.labels(status=status).inc()

    def record_warning(self, severity: str) -> None:
        self._security_warnings.labels(severity=severity).inc()

    def record_audit_rotation(self) -> None:
        self._audit_rotations.inc()

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of a counter sample (0.0 if never incremented)."""
        value = self._registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0
