# Overview: Company profile and tax configuration lookup.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import CompanyProfile, PaymentMethod

DEFAULT_PAYMENT_METHODS = ("Cash", "Bank Transfer", "UPI", "Card", "Cheque")


@dataclass(frozen=True)
class TaxConfig:
    seller_state: str | None
    default_tax_rate_bps: int
    tax_name: str
    enable_tax: bool

    def to_dict(self) -> dict:
        return {
            "seller_state": self.seller_state,
            "default_tax_rate_bps": self.default_tax_rate_bps,
            "tax_name": self.tax_name,
            "enable_tax": self.enable_tax,
        }


def get_company_profile() -> CompanyProfile | None:
    return db.session.query(CompanyProfile).order_by(CompanyProfile.id.asc()).first()


def get_tax_config() -> TaxConfig:
    """
    Resolve the effective tax configuration.

    The company_profile row wins; app config fills in when no profile exists
    or the profile has no state.
    """
    cfg = current_app.config
    profile = get_company_profile()
    if profile is None:
        return TaxConfig(
            seller_state=cfg.get("SELLER_STATE") or None,
            default_tax_rate_bps=int(cfg.get("DEFAULT_TAX_RATE_BPS", 500)),
            tax_name=cfg.get("TAX_NAME", "GST"),
            enable_tax=bool(cfg.get("ENABLE_TAX", True)),
        )
    return TaxConfig(
        seller_state=profile.state or cfg.get("SELLER_STATE") or None,
        default_tax_rate_bps=profile.default_tax_rate_bps,
        tax_name=profile.tax_name,
        enable_tax=profile.enable_tax,
    )


def ensure_company_profile(company_name: str = "My Restaurant") -> CompanyProfile:
    """Create the single company_profile row from app config if missing (does not commit)."""
    profile = get_company_profile()
    if profile is not None:
        return profile

    cfg = current_app.config
    profile = CompanyProfile(
        company_name=company_name,
        state=cfg.get("SELLER_STATE") or None,
        default_tax_rate_bps=int(cfg.get("DEFAULT_TAX_RATE_BPS", 500)),
        tax_name=cfg.get("TAX_NAME", "GST"),
        enable_tax=bool(cfg.get("ENABLE_TAX", True)),
    )
    db.session.add(profile)
    db.session.flush()
    return profile


def seed_payment_methods(names=DEFAULT_PAYMENT_METHODS) -> list[PaymentMethod]:
    """Insert any missing payment methods (does not commit)."""
    existing = {m.name for m in db.session.query(PaymentMethod).all()}
    created = []
    for name in names:
        if name in existing:
            continue
        method = PaymentMethod(name=name, is_active=True)
        db.session.add(method)
        created.append(method)
    db.session.flush()
    return created
