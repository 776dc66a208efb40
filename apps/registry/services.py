"""
Artifact identity services.

A digest identifies exactly one build output for good. Seeing the same digest
produced by a different source input is a data-integrity violation that no
retry can resolve.
"""

from __future__ import annotations

import logging

from django.db import IntegrityError, transaction

from apps.orchestration.errors import ArtifactIntegrityError
from apps.registry.models import ArtifactReference

logger = logging.getLogger(__name__)


def check_digest_integrity(digest: str, source_ref: str) -> ArtifactReference | None:
    """
    Ensure ``digest`` has not been recorded for a different source input.

    Returns:
        The existing reference for this digest, if any.

    Raises:
        ArtifactIntegrityError: The digest belongs to another source input.
    """
    existing = ArtifactReference.objects.select_related("run").filter(digest=digest).first()
    if existing is not None and existing.source_ref != source_ref:
        logger.error(
            f"Digest collision: {digest} recorded for {existing.source_ref}, "
            f"now produced by {source_ref}"
        )
        raise ArtifactIntegrityError(
            f"Digest {digest} was already recorded for source {existing.source_ref} "
            f"(run {existing.run.run_id}); refusing to associate it with {source_ref}"
        )
    return existing


def record_artifact(
    *,
    digest: str,
    tag: str,
    repository: str,
    source_ref: str,
    run,
) -> ArtifactReference:
    """
    Record a published artifact, idempotently.

    Publishing the same digest again for the same source returns the existing
    reference unchanged.
    """
    existing = check_digest_integrity(digest, source_ref)
    if existing is not None:
        return existing

    try:
        with transaction.atomic():
            reference = ArtifactReference.objects.create(
                digest=digest,
                tag=tag,
                repository=repository,
                source_ref=source_ref,
                run=run,
            )
    except IntegrityError:
        # Another run recorded the digest between our check and insert.
        existing = check_digest_integrity(digest, source_ref)
        if existing is None:
            raise
        return existing

    logger.info(f"Recorded artifact {reference} for source {source_ref}")
    return reference
