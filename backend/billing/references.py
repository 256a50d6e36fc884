# Overview: Tagged back-references from ledger rows to the aggregate that caused them.

from __future__ import annotations

from dataclasses import dataclass

from .errors import NotFound

REF_KOT = "kot"
REF_INVOICE = "invoice"
REF_PURCHASE = "purchase"

REFERENCE_KINDS = (REF_KOT, REF_INVOICE, REF_PURCHASE)


@dataclass(frozen=True)
class Reference:
    """
    Points at one KOT, invoice or purchase.

    Stored as (reference_type, reference_id) column pairs; the kind is the
    discriminant and is checked again whenever the reference is resolved.
    """
    kind: str
    id: int

    def __post_init__(self):
        if self.kind not in REFERENCE_KINDS:
            raise ValueError(f"unknown reference kind: {self.kind!r}")
        if not isinstance(self.id, int) or isinstance(self.id, bool) or self.id <= 0:
            raise ValueError(f"invalid reference id: {self.id!r}")

    @classmethod
    def kot(cls, kot_id: int) -> "Reference":
        return cls(REF_KOT, kot_id)

    @classmethod
    def invoice(cls, invoice_id: int) -> "Reference":
        return cls(REF_INVOICE, invoice_id)

    @classmethod
    def purchase(cls, purchase_id: int) -> "Reference":
        return cls(REF_PURCHASE, purchase_id)

    @classmethod
    def from_columns(cls, reference_type: str | None, reference_id: int | None) -> "Reference | None":
        if reference_type is None or reference_id is None:
            return None
        return cls(reference_type, reference_id)

    def to_dict(self) -> dict:
        return {"type": self.kind, "id": self.id}

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


def _model_for(kind: str):
    from .models import Kot, Invoice, Purchase

    return {REF_KOT: Kot, REF_INVOICE: Invoice, REF_PURCHASE: Purchase}[kind]


def resolve_reference(reference: Reference, expected_kind: str | None = None, *, query=None):
    """
    Load the row a reference points at.

    Raises NotFound when the kind does not match expected_kind or the row no
    longer exists. `query` lets callers pass a pre-configured (e.g. locked)
    query for the model.
    """
    if expected_kind is not None and reference.kind != expected_kind:
        raise NotFound(
            f"Expected a {expected_kind} reference, got {reference.kind}",
            details={"reference": reference.to_dict()},
        )

    from .extensions import db

    model = _model_for(reference.kind)
    q = query if query is not None else db.session.query(model)
    row = q.filter(model.id == reference.id).first()
    if row is None:
        raise NotFound(
            f"{reference.kind.capitalize()} {reference.id} not found",
            details={"reference": reference.to_dict()},
        )
    return row
