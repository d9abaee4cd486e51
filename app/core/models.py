"""
Abstract base models shared by every domain app.

Base Classes:
    BaseModel: Timestamps (created_at, updated_at)
    UUIDPrimaryKeyMixin: UUID primary key instead of an integer
    VersionedModel: Optimistic locking version bumped on every update

Usage:
    from core.models import BaseModel, UUIDPrimaryKeyMixin, VersionedModel

    class RefundTransaction(UUIDPrimaryKeyMixin, VersionedModel, BaseModel):
        amount = models.DecimalField(max_digits=12, decimal_places=2)

Note:
    Always list mixins before BaseModel in inheritance.
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class BaseModel(models.Model):
    """
    Abstract base model providing creation and modification timestamps.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self.pk})"


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use a UUID primary key.

    Ids are generated client-side, so a record's id is known before the
    insert (useful for idempotency keys built from it).
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier (UUID v4)",
    )

    class Meta:
        abstract = True


class VersionedModel(models.Model):
    """
    Optimistic locking support.

    Every update increments ``version`` in the database with an F()
    expression and reads the new value back, so two writers that loaded
    the same version cannot both pass a version check.

    Note:
        Models with protected FSM fields can't use refresh_from_db() for
        the whole row; only the version column is refreshed here.
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        is_update = (
            not self._state.adding and self.pk and not kwargs.get("force_insert", False)
        )
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None and "version" not in update_fields:
                kwargs["update_fields"] = [*update_fields, "version"]
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])


__all__ = [
    "BaseModel",
    "UUIDPrimaryKeyMixin",
    "VersionedModel",
]
