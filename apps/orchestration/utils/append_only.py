"""
Append-only model base.

Rows of models deriving from ``AppendOnlyModel`` can be inserted once and never
updated or deleted, neither through the instance nor through a queryset.
Corrections are modelled as new rows.
"""

from __future__ import annotations

from django.db import models

from apps.orchestration.errors import LedgerError


class AppendOnlyQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise LedgerError(f"{self.model.__name__} rows are append-only and cannot be updated")

    def delete(self):
        raise LedgerError(f"{self.model.__name__} rows are append-only and cannot be deleted")


class AppendOnlyModel(models.Model):
    objects = AppendOnlyQuerySet.as_manager()

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if self.pk is not None and not self._state.adding:
            raise LedgerError(f"{type(self).__name__} {self.pk} is immutable once recorded")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise LedgerError(f"{type(self).__name__} rows are append-only and cannot be deleted")
