"""
Data Transfer Objects (DTOs) for pipeline stage contracts.

Each stage driver returns a structured result object. The orchestrator records
``to_dict()`` of the result as the ledger snapshot and carries the artifact
forward to the next stage.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class ArtifactInfo:
    """An artifact as seen by drivers: digest plus where it lives."""

    digest: str
    repository: str = ""
    tag: str = ""

    @property
    def image_ref(self) -> str:
        """Digest-pinned image reference (``repo@sha256:...``)."""
        if self.repository:
            return f"{self.repository}@{self.digest}"
        return self.digest

    @property
    def tagged_ref(self) -> str:
        if self.repository and self.tag:
            return f"{self.repository}:{self.tag}"
        return self.image_ref

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Trigger:
    """
    Opaque record that starts a run.

    At minimum a source-change identifier and a target key
    (``cluster/namespace/workload``).
    """

    source_ref: str
    target_key: str
    source: str = "api"
    trace_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Trigger":
        """Build a trigger from a request body, raising ValueError when invalid."""
        if not isinstance(data, dict):
            raise ValueError("trigger must be a JSON object")

        source_ref = str(data.get("source_ref") or "").strip()
        if not source_ref:
            raise ValueError("source_ref is required")

        target = data.get("target")
        if isinstance(target, dict):
            parts = [str(target.get(k) or "").strip() for k in ("cluster", "namespace", "workload")]
            target_key = "/".join(parts) if all(parts) else ""
        else:
            target_key = str(target or "").strip()
        if not target_key:
            raise ValueError("target is required")

        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            raise ValueError("payload must be a JSON object")

        return cls(
            source_ref=source_ref,
            target_key=target_key,
            source=str(data.get("source") or "api"),
            trace_id=data.get("trace_id") or None,
            payload=payload,
        )


@dataclass
class StageContext:
    """
    Input context for a stage driver.

    Carries the correlation IDs, the deployment target, the stage's driver
    configuration and the artifact produced by earlier stages.
    """

    trace_id: str
    run_id: str
    stage: str
    source_ref: str
    cluster: str
    namespace: str
    workload: str
    repository: str = ""
    attempt: int = 1
    source: str = "api"
    config: dict[str, Any] = field(default_factory=dict)
    artifact: ArtifactInfo | None = None
    timeout: float | None = None
    trigger_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def target_key(self) -> str:
        return f"{self.cluster}/{self.namespace}/{self.workload}"

    @property
    def short_ref(self) -> str:
        return self.source_ref[:12]

    def placeholders(self) -> dict[str, Any]:
        """Values available to ``${name}`` templates in driver configuration."""
        values: dict[str, Any] = {
            "run_id": self.run_id,
            "trace_id": self.trace_id,
            "source_ref": self.source_ref,
            "short_ref": self.short_ref,
            "cluster": self.cluster,
            "namespace": self.namespace,
            "workload": self.workload,
            "repository": self.repository,
            "image": f"{self.repository}:{self.short_ref}" if self.repository else self.short_ref,
            "attempt": self.attempt,
        }
        if self.artifact is not None:
            values.update(
                {
                    "digest": self.artifact.digest,
                    "tag": self.artifact.tag,
                    "image_ref": self.artifact.image_ref,
                    "tagged_ref": self.artifact.tagged_ref,
                }
            )
        return values

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BuildResult:
    """Result from apps.builds (Stage 1: Build)."""

    digest: str
    image: str = ""
    log_tail: str = ""
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TestResult:
    """Result from apps.builds (Stage 2: Test)."""

    __test__ = False  # not a pytest test class

    passed: bool = True
    summary: str = ""
    log_tail: str = ""
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PublishResult:
    """
    Result from apps.registry (Stage 3: Publish).

    Output:
    - digest/tag/repository: durable reference of the published artifact
    - already_present: the registry already had this tag at this digest
    """

    digest: str
    tag: str
    repository: str = ""
    already_present: bool = False
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DeployResult:
    """Result from apps.clusters (Stage 4: Deploy)."""

    accepted: bool = True
    revision: str = ""
    detail: str = ""
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class VerifyResult:
    """
    Result from apps.verification (Stage 5: Verify).

    Evidence that the deployed digest is ready and emitting telemetry.
    """

    digest: str
    ready_at: datetime
    observed_at: datetime
    sample_count: float = 0.0
    readiness: dict[str, Any] = field(default_factory=dict)
    telemetry: dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["ready_at"] = self.ready_at.isoformat()
        data["observed_at"] = self.observed_at.isoformat()
        return data


StageResult = BuildResult | TestResult | PublishResult | DeployResult | VerifyResult


@dataclass
class RunSnapshot:
    """Read-only view of a run, composed from the run row and its ledger."""

    run_id: str
    trace_id: str
    status: str
    target: str
    source_ref: str
    source: str
    current_stage: str | None = None
    failed_stage: str | None = None
    error_kind: str | None = None
    error_message: str = ""
    cancel_requested: bool = False
    exit_code: int | None = None
    artifact: dict[str, Any] | None = None
    checkpoint: dict[str, Any] | None = None
    stages_completed: list[str] = field(default_factory=list)
    attempts: list[dict[str, Any]] = field(default_factory=list)
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    deadline_at: datetime | None = None
    total_duration_ms: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.exit_code is not None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("created_at", "started_at", "completed_at", "deadline_at"):
            value = getattr(self, key)
            data[key] = value.isoformat() if value else None
        return data
