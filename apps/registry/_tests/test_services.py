"""Tests for artifact identity services and the read-only admin."""

import pytest
from django.urls import reverse

from apps.orchestration.errors import ArtifactIntegrityError, ErrorKind, LedgerError
from apps.registry.models import ArtifactReference
from apps.registry.services import check_digest_integrity, record_artifact

DIGEST = "sha256:" + "12" * 32


@pytest.mark.django_db
class TestRecordArtifact:
    def test_records_reference(self, make_run):
        run = make_run()
        reference = record_artifact(
            digest=DIGEST, tag="aaaa1111", repository="registry.example.com/shop/cart", source_ref="aaaa1111", run=run
        )
        assert reference.run == run
        assert str(reference) == f"registry.example.com/shop/cart@{DIGEST}"
        assert reference.to_dict()["run_id"] == "run-1"

    def test_same_source_is_idempotent(self, make_run):
        first = record_artifact(digest=DIGEST, tag="t1", repository="r", source_ref="aaaa1111", run=make_run("run-1"))
        again = record_artifact(digest=DIGEST, tag="t2", repository="r", source_ref="aaaa1111", run=make_run("run-2"))

        assert again.pk == first.pk
        assert again.tag == "t1"
        assert ArtifactReference.objects.count() == 1

    def test_other_source_is_integrity_error(self, make_run):
        record_artifact(digest=DIGEST, tag="t1", repository="r", source_ref="aaaa1111", run=make_run("run-1"))

        with pytest.raises(ArtifactIntegrityError) as exc_info:
            record_artifact(digest=DIGEST, tag="t2", repository="r", source_ref="bbbb2222", run=make_run("run-2"))

        assert exc_info.value.kind == ErrorKind.INTEGRITY
        assert "aaaa1111" in str(exc_info.value)
        assert "run-1" in str(exc_info.value)
        assert ArtifactReference.objects.get().source_ref == "aaaa1111"

    def test_check_unknown_digest(self, db):
        assert check_digest_integrity(DIGEST, "aaaa1111") is None

    def test_references_are_immutable(self, make_run):
        reference = record_artifact(digest=DIGEST, tag="t", repository="r", source_ref="aaaa1111", run=make_run())
        reference.tag = "moved"
        with pytest.raises(LedgerError):
            reference.save()
        with pytest.raises(LedgerError):
            ArtifactReference.objects.all().delete()


@pytest.mark.django_db
class TestArtifactReferenceAdmin:
    def test_read_only(self, admin_client, make_run):
        reference = record_artifact(digest=DIGEST, tag="t", repository="r", source_ref="aaaa1111", run=make_run())

        assert admin_client.get(reverse("admin:registry_artifactreference_changelist")).status_code == 200
        response = admin_client.get(reverse("admin:registry_artifactreference_change", args=[reference.pk]))
        assert response.status_code == 200
        assert admin_client.get(reverse("admin:registry_artifactreference_add")).status_code == 403
        response = admin_client.get(reverse("admin:registry_artifactreference_delete", args=[reference.pk]))
        assert response.status_code == 403
