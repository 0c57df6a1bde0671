"""
Pydantic models for SyncedSecret resources.

This module defines type-safe data models for the SyncedSecret custom
resource. A SyncedSecret maps AWS Secrets Manager secrets onto the keys of a
Kubernetes Secret, either by importing a whole JSON secret (``dataFrom``) or
through an ordered list of ``data`` entries.

Each data entry is a tagged variant: exactly one of a literal value, a key
reference, a whole-value reference or a template is set. The invariant is
enforced when the resource is parsed, never during resolution.
"""

from enum import Enum
from typing import Any

import pydantic
from pydantic import BaseModel, Field, field_validator, model_validator

from ..errors import ValidationError


class EntryKind(str, Enum):
    """Variant of a data entry."""

    LITERAL = "literal"
    KEY_REF = "secretKeyRef"
    SECRET_REF = "secretRef"
    TEMPLATE = "template"


class SecretRef(BaseModel):
    """Reference to a whole AWS secret."""

    name: str = Field(..., min_length=1, description="AWS secret name or ARN")


class SecretKeyRef(BaseModel):
    """Reference to a single key of a JSON AWS secret."""

    name: str = Field(..., min_length=1, description="AWS secret name or ARN")
    key: str = Field(..., min_length=1, description="Key within the JSON secret")


class ValueFrom(BaseModel):
    """Source of a data entry's value."""

    model_config = {"populate_by_name": True}

    secret_ref: SecretRef | None = Field(None, alias="secretRef")
    secret_key_ref: SecretKeyRef | None = Field(None, alias="secretKeyRef")
    template: str | None = Field(None, description="Jinja2 template body")


class DataEntry(BaseModel):
    """One output key of the synced Kubernetes Secret."""

    model_config = {"populate_by_name": True}

    name: str = Field(..., min_length=1, description="Key in the output Secret")
    value: str | None = Field(None, description="Literal value")
    secret_key_ref: SecretKeyRef | None = Field(None, alias="secretKeyRef")
    value_from: ValueFrom | None = Field(None, alias="valueFrom")

    @model_validator(mode="after")
    def validate_single_variant(self) -> "DataEntry":
        variants = [
            self.value is not None,
            self.secret_key_ref is not None,
            self.value_from is not None and self.value_from.secret_key_ref is not None,
            self.value_from is not None and self.value_from.secret_ref is not None,
            self.value_from is not None and self.value_from.template is not None,
        ]
        count = sum(variants)
        if count != 1:
            raise ValueError(
                f"data entry '{self.name}' must set exactly one of value, "
                f"secretKeyRef, valueFrom.secretRef or valueFrom.template "
                f"(found {count})"
            )
        return self

    @property
    def kind(self) -> EntryKind:
        if self.value is not None:
            return EntryKind.LITERAL
        if self.key_ref is not None:
            return EntryKind.KEY_REF
        if self.value_from is not None and self.value_from.secret_ref is not None:
            return EntryKind.SECRET_REF
        return EntryKind.TEMPLATE

    @property
    def key_ref(self) -> SecretKeyRef | None:
        """Key reference, whether declared on the entry or under valueFrom."""
        if self.secret_key_ref is not None:
            return self.secret_key_ref
        if self.value_from is not None:
            return self.value_from.secret_key_ref
        return None


class DataFrom(BaseModel):
    """Whole-secret import: every key of a JSON secret becomes an output key."""

    model_config = {"populate_by_name": True}

    secret_ref: SecretRef = Field(..., alias="secretRef")


class SecretMetadata(BaseModel):
    """Extra metadata applied to the output Secret."""

    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class SyncedSecretSpec(BaseModel):
    """
    Specification for a SyncedSecret resource.

    Exactly one of ``data`` and ``dataFrom`` must be set.
    """

    model_config = {"populate_by_name": True}

    iam_role: str = Field(
        "", alias="IAMRole", description="IAM role assumed to read the secrets"
    )
    aws_account_id: str | None = Field(
        None,
        alias="AWSAccountID",
        description="Account used to build the role ARN when IAMRole is a bare name",
    )
    data: list[DataEntry] | None = Field(None, description="Ordered data entries")
    data_from: DataFrom | None = Field(None, alias="dataFrom")
    secret_metadata: SecretMetadata = Field(
        default_factory=SecretMetadata, alias="secretMetadata"
    )

    @field_validator("iam_role", mode="before")
    @classmethod
    def normalize_role(cls, v):
        return (v or "").strip()

    @model_validator(mode="after")
    def validate_source(self) -> "SyncedSecretSpec":
        if (self.data is None) == (self.data_from is None):
            raise ValueError("exactly one of 'data' and 'dataFrom' must be set")

        if self.data is not None:
            seen: set[str] = set()
            duplicates: list[str] = []
            for entry in self.data:
                if entry.name in seen and entry.name not in duplicates:
                    duplicates.append(entry.name)
                seen.add(entry.name)
            if duplicates:
                raise ValueError(
                    f"duplicate data entry names: {', '.join(duplicates)}"
                )
        return self


class SyncedSecretResource(BaseModel):
    """
    A SyncedSecret as tracked by the reconciler.

    Replaced wholesale when the resource is updated; never mutated.
    """

    model_config = {"frozen": True}

    name: str
    namespace: str
    spec: SyncedSecretSpec

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def iam_role(self) -> str:
        """
        Role used for authorization and fetches.

        A bare role name is expanded to an ARN when AWSAccountID is set;
        otherwise the declared value is used as is.
        """
        role = self.spec.iam_role
        if role and not role.startswith("arn:") and self.spec.aws_account_id:
            return f"arn:aws:iam::{self.spec.aws_account_id}:role/{role}"
        return role

    @classmethod
    def from_kopf(
        cls, spec: dict[str, Any], name: str, namespace: str
    ) -> "SyncedSecretResource":
        """
        Build a resource from the raw body delivered by kopf.

        Raises:
            ValidationError: If the spec violates the schema or its invariants
        """
        try:
            parsed = SyncedSecretSpec.model_validate(dict(spec))
        except pydantic.ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'spec'}: {err['msg']}"
                for err in e.errors()
            )
            raise ValidationError(
                f"Invalid SyncedSecret {namespace}/{name}: {details}"
            ) from e
        return cls(name=name, namespace=namespace, spec=parsed)
