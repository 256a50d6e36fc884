# Overview: Flask API routes for invoices and invoice payments.

# backend/billing/routes/invoices.py
"""
Invoice API Routes

Invoices are created only by KOT finalization; this blueprint reads them,
takes payments against them and tracks receivables.

SECURITY:
- Any role may read invoices and record payments
- Voiding a payment requires manager or admin
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_identity, require_role
from ..errors import BillingError
from ..identity import ROLES, ROLE_ADMIN, ROLE_MANAGER
from ..models.invoices import INVOICE_STATUSES
from ..references import Reference
from ..services import invoice_service, payment_service
from ..time_utils import parse_iso_date
from ..validation import (
    ValidationError,
    get_json_object,
    optional_str,
    optional_date,
    require_int,
    query_int,
)

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_identity
def list_invoices_route():
    """List invoices. Query: status, payment_status, customer_id, limit, offset."""
    try:
        status = request.args.get("status") or None
        if status is not None and status not in INVOICE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(INVOICE_STATUSES)}")
        customer_id = request.args.get("customer_id")

        invoices, total = invoice_service.list_invoices(
            status=status,
            payment_status=request.args.get("payment_status") or None,
            customer_id=query_int(request.args, "customer_id", None) if customer_id else None,
            limit=query_int(request.args, "limit", 100, minimum=1, maximum=500),
            offset=query_int(request.args, "offset", 0),
        )
        return jsonify({"invoices": [i.to_dict() for i in invoices], "total": total}), 200

    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/receivables")
@require_identity
def receivables_route():
    """Outstanding balances with ageing. Query: as_of (YYYY-MM-DD)."""
    try:
        try:
            as_of = parse_iso_date(request.args.get("as_of"))
        except ValueError:
            raise ValidationError("as_of must be an ISO-8601 date (YYYY-MM-DD)")
        return jsonify(invoice_service.list_receivables(as_of)), 200

    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list receivables")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_identity
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"invoice": invoice.to_dict(include_lines=True)}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/send")
@require_identity
def send_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.mark_invoice_sent(invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to send invoice")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENTS
# =============================================================================

@invoices_bp.post("/<int:invoice_id>/payments")
@require_role(*ROLES)
def add_payment_route(invoice_id: int):
    """
    Record a payment against an invoice.

    Request body:
    {
        "amount_cents": 10000,
        "payment_method": "UPI" | 3,  (name or payment_methods id)
        "reference_number": "UTR123",  (optional)
        "payment_date": "2024-01-31",  (optional, default today)
        "notes": "..."  (optional)
    }

    Returns:
        201: payment and updated summary
        400: invalid amount/method or overpayment
        404: invoice not found
        503: concurrent update, retry
    """
    try:
        data = get_json_object(request)
        method = data.get("payment_method")
        if method is None:
            raise ValidationError("payment_method is required")

        parent = Reference.invoice(invoice_id)
        payment = payment_service.apply_payment(
            parent,
            require_int(data, "amount_cents"),
            method,
            reference_number=optional_str(data, "reference_number", 128),
            payment_date=optional_date(data, "payment_date"),
            notes=optional_str(data, "notes"),
            user_id=g.identity.user_id,
        )
        return jsonify({
            "payment": payment.to_dict(),
            "summary": payment_service.get_payment_summary(parent),
        }), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add invoice payment")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/payments/<int:payment_id>/void")
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def void_payment_route(invoice_id: int, payment_id: int):
    """Void a payment. Body: {"reason": "..."}."""
    try:
        data = get_json_object(request)
        parent = Reference.invoice(invoice_id)
        payment = payment_service.void_payment(
            parent,
            payment_id,
            reason=optional_str(data, "reason", 255),
            user_id=g.identity.user_id,
        )
        return jsonify({
            "payment": payment.to_dict(),
            "summary": payment_service.get_payment_summary(parent),
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to void invoice payment")
        return jsonify({"error": "Internal server error"}), 500
