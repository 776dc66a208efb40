"""
OCI distribution API publisher.

The build step pushes the image by digest; publishing attaches the durable tag
by copying the manifest under the tag name:

    HEAD /v2/<name>/manifests/<tag>      (already at digest? -> no-op)
    GET  /v2/<name>/manifests/<digest>
    PUT  /v2/<name>/manifests/<tag>

Config:
    registry_url: e.g. "https://registry.example.com" (required)
    name: repository path in the registry (default: target repository
          without its registry host)
    tag_template: default "${short_ref}"
    headers: extra request headers (e.g. Authorization)
"""

from __future__ import annotations

import logging
import time
from typing import Any

from apps.orchestration.dtos import PublishResult, StageContext
from apps.orchestration.errors import PermanentAdapterError
from apps.orchestration.utils import httpclient
from apps.registry.drivers.base import BasePublishDriver

logger = logging.getLogger(__name__)

MANIFEST_MEDIA_TYPES = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    ]
)


def repository_path(repository: str) -> str:
    """Strip the registry host from an image repository, if present."""
    first, _, rest = repository.partition("/")
    if rest and ("." in first or ":" in first or first == "localhost"):
        return rest
    return repository


class RegistryClient:
    """Tiny client for the manifest endpoints of an OCI registry."""

    def __init__(self, registry_url: str, headers: dict[str, str] | None = None, timeout: float = 30.0):
        self.registry_url = registry_url.rstrip("/")
        self.headers = dict(headers or {})
        self.timeout = timeout

    def _url(self, name: str, reference: str) -> str:
        return f"{self.registry_url}/v2/{name}/manifests/{reference}"

    def manifest_digest(self, name: str, reference: str) -> str | None:
        """Digest the reference currently resolves to, or None if absent."""
        response = httpclient.request(
            self._url(name, reference),
            method="HEAD",
            headers={"Accept": MANIFEST_MEDIA_TYPES, **self.headers},
            timeout=self.timeout,
            allow_statuses=(404,),
        )
        if response.status == 404:
            return None
        return response.header("Docker-Content-Digest") or None

    def get_manifest(self, name: str, digest: str) -> tuple[bytes, str]:
        response = httpclient.request(
            self._url(name, digest),
            headers={"Accept": MANIFEST_MEDIA_TYPES, **self.headers},
            timeout=self.timeout,
            allow_statuses=(404,),
        )
        if response.status == 404:
            raise PermanentAdapterError(f"Manifest {digest} not found in {name}")
        content_type = response.header("Content-Type", "application/vnd.oci.image.manifest.v1+json")
        return response.body.encode("utf-8"), content_type

    def put_manifest(self, name: str, tag: str, body: bytes, content_type: str) -> str:
        response = httpclient.request(
            self._url(name, tag),
            method="PUT",
            data=body,
            headers={"Content-Type": content_type, **self.headers},
            timeout=self.timeout,
        )
        return response.header("Docker-Content-Digest")


class OCIPublishDriver(BasePublishDriver):
    """Tag an already pushed digest through the registry HTTP API."""

    name = "oci"

    def validate_config(self, config: dict[str, Any]) -> bool:
        url = config.get("registry_url", "")
        return isinstance(url, str) and (url.startswith("http://") or url.startswith("https://"))

    def client(self, ctx: StageContext) -> RegistryClient:
        return RegistryClient(
            ctx.config["registry_url"],
            headers=ctx.config.get("headers"),
            timeout=ctx.timeout or 30.0,
        )

    def publish(self, ctx: StageContext) -> PublishResult:
        self._check_config(ctx)
        artifact = self._require_artifact(ctx)
        start = time.perf_counter()

        name = ctx.config.get("name") or repository_path(ctx.repository)
        if not name:
            raise PermanentAdapterError("No repository configured for OCI publish", stage=ctx.stage)
        tag = self.resolve_tag(ctx)
        client = self.client(ctx)

        current = client.manifest_digest(name, tag)
        if current == artifact.digest:
            logger.info(f"{name}:{tag} already at {artifact.digest}; nothing to publish")
            return PublishResult(
                digest=artifact.digest,
                tag=tag,
                repository=ctx.repository,
                already_present=True,
                duration_ms=(time.perf_counter() - start) * 1000,
            )
        if current:
            logger.warning(f"Moving tag {name}:{tag} from {current} to {artifact.digest}")

        body, content_type = client.get_manifest(name, artifact.digest)
        stored = client.put_manifest(name, tag, body, content_type)
        if stored and stored != artifact.digest:
            raise PermanentAdapterError(
                f"Registry stored {name}:{tag} as {stored}, expected {artifact.digest}",
                stage=ctx.stage,
            )

        logger.info(f"Published {name}:{tag} -> {artifact.digest}")
        return PublishResult(
            digest=artifact.digest,
            tag=tag,
            repository=ctx.repository,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
