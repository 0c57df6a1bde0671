"""
Resolution of a SyncedSecret spec into the output Secret's data.

Entries are resolved in declaration order against the secret cache; the
resolver keeps no state between calls. Any failing entry aborts the whole
resolution so a partially resolved document is never written.
"""

import logging
from typing import Any

from ..errors import (
    KeyNotFoundError,
    NotAMapError,
    TypeMismatchError,
    ValidationError,
)
from ..models.synced_secret import DataEntry, SyncedSecretSpec
from .secret_cache import SecretCache
from .templating import build_context, render_template

logger = logging.getLogger(__name__)

ResolvedDocument = dict[str, bytes]


class MappingResolver:
    """Resolves SyncedSecret specs through the secret cache."""

    def __init__(self, cache: SecretCache):
        self.cache = cache

    async def resolve(self, spec: SyncedSecretSpec, role: str) -> ResolvedDocument:
        """
        Resolve a spec into the output document.

        Args:
            spec: Validated SyncedSecret spec
            role: IAM role used for every secret fetch

        Returns:
            Output key -> value bytes

        Raises:
            SyncError: The first entry failure (NotFoundError, FetchError,
                KeyNotFoundError, TypeMismatchError, NotAMapError, TemplateError)
        """
        if spec.data_from is not None:
            return await self._resolve_data_from(spec.data_from.secret_ref.name, role)

        document: ResolvedDocument = {}
        template_context: dict[str, Any] | None = None
        for entry in spec.data or []:
            template = entry.value_from.template if entry.value_from else None
            if template is not None:
                # One descriptor snapshot per resolution
                if template_context is None:
                    template_context = build_context(self.cache, role)
                rendered = await render_template(entry.name, template, template_context)
                document[entry.name] = rendered.encode("utf-8")
            else:
                document[entry.name] = await self._resolve_entry(entry, role)
        return document

    async def _resolve_data_from(self, secret_id: str, role: str) -> ResolvedDocument:
        value = await self.cache.get_value(secret_id, role)
        if isinstance(value, bytes):
            raise NotAMapError(secret_id)
        return {key: item.encode("utf-8") for key, item in value.items()}

    async def _resolve_entry(self, entry: DataEntry, role: str) -> bytes:
        if entry.value is not None:
            return entry.value.encode("utf-8")

        ref = entry.key_ref
        if ref is not None:
            value = await self.cache.get_value(ref.name, role)
            if isinstance(value, bytes):
                raise TypeMismatchError(ref.name)
            if ref.key not in value:
                raise KeyNotFoundError(ref.name, ref.key)
            return value[ref.key].encode("utf-8")

        # Whole-value reference: the stored bytes, untouched
        secret_ref = entry.value_from.secret_ref if entry.value_from else None
        if secret_ref is None:
            raise ValidationError(f"data entry '{entry.name}' declares no value source")
        cached = await self.cache.get_entry(secret_ref.name, role)
        return cached.raw
