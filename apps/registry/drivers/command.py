"""
Command-line publisher (crane, skopeo, docker, ...).

Config:
    command: argv template, e.g. ["crane", "tag", "${image_ref}", "${tag}"]
    tag_template: default "${short_ref}"
    registry_url: optional; when set, the tag is looked up first and an
        existing tag at the same digest makes the publish a no-op
    headers: extra headers for that lookup
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from apps.orchestration.dtos import PublishResult, StageContext
from apps.orchestration.errors import PermanentAdapterError, TransientAdapterError
from apps.orchestration.utils.process import render_argv, run_command
from apps.registry.drivers.base import BasePublishDriver
from apps.registry.drivers.oci import RegistryClient, repository_path

logger = logging.getLogger(__name__)


class CommandPublishDriver(BasePublishDriver):
    name = "command"

    def validate_config(self, config: dict[str, Any]) -> bool:
        command = config.get("command")
        return bool(command) and isinstance(command, (list, str))

    def publish(self, ctx: StageContext) -> PublishResult:
        self._check_config(ctx)
        artifact = self._require_artifact(ctx)
        tag = self.resolve_tag(ctx)

        if ctx.config.get("registry_url"):
            client = RegistryClient(
                ctx.config["registry_url"],
                headers=ctx.config.get("headers"),
                timeout=ctx.timeout or 30.0,
            )
            name = ctx.config.get("name") or repository_path(ctx.repository)
            if client.manifest_digest(name, tag) == artifact.digest:
                logger.info(f"{name}:{tag} already at {artifact.digest}; skipping publish command")
                return PublishResult(
                    digest=artifact.digest,
                    tag=tag,
                    repository=ctx.repository,
                    already_present=True,
                )

        values = ctx.placeholders()
        values.update(
            {
                "tag": tag,
                "tagged_ref": replace(artifact, repository=ctx.repository, tag=tag).tagged_ref,
            }
        )
        argv = render_argv(ctx.config["command"], values)
        result = run_command(argv, timeout=ctx.timeout, env=ctx.config.get("env"))
        if not result.ok:
            message = f"{argv[0]} exited with {result.returncode}: {result.tail(10)}"
            if result.returncode in set(ctx.config.get("transient_exit_codes", [])):
                raise TransientAdapterError(message, stage=ctx.stage)
            raise PermanentAdapterError(message, stage=ctx.stage)

        return PublishResult(
            digest=artifact.digest,
            tag=tag,
            repository=ctx.repository,
            duration_ms=result.duration_ms,
        )
