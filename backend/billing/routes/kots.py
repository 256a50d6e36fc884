# Overview: Flask API routes for KOT operations; parses input and returns JSON responses.

# backend/billing/routes/kots.py
"""
KOT API Routes

DESIGN:
- Open KOTs, edit lines while the kitchen works on them
- Move through pending -> preparing -> ready
- Finalize (served) into an invoice, or cancel
- Reverse / delete served KOTs (admin, manager)

SECURITY:
- Any role may create, edit, progress and finalize KOTs
- Discounts need manager or admin
- Cancelling a KOT the kitchen already started needs manager or admin
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_identity, require_role
from ..errors import BillingError
from ..identity import ROLES, ROLE_ADMIN, ROLE_MANAGER
from ..models.orders import KOT_STATUSES, KOT_PAYMENT_METHODS, ORDER_TYPES
from ..services import kot_service, payment_service
from ..validation import (
    ValidationError,
    get_json_object,
    optional_int,
    optional_amount,
    optional_str,
    optional_date,
    require_choice,
    query_int,
)

kots_bp = Blueprint("kots", __name__, url_prefix="/api/kots")


def _parse_item(entry) -> dict:
    if not isinstance(entry, dict):
        raise ValidationError("items must be a list of objects")
    return {
        "menu_item_id": optional_int(entry, "menu_item_id"),
        "product_id": optional_int(entry, "product_id"),
        "quantity": optional_int(entry, "quantity", 1),
        "notes": optional_str(entry, "notes", 255),
    }


# =============================================================================
# KOT CREATION / QUERIES
# =============================================================================

@kots_bp.post("")
@require_role(*ROLES)
def create_kot_route():
    """
    Open a KOT.

    Request body:
    {
        "order_type": "dine_in" | "take_away" | "delivery",
        "table_number": "T4",  (optional)
        "delivery_platform": "swiggy",  (delivery only)
        "customer_id": 3,  (optional)
        "customer_name": "...", "customer_phone": "...",  (optional)
        "notes": "...",  (optional)
        "items": [{"menu_item_id": 1, "quantity": 2, "notes": "less spicy"}]
    }
    """
    try:
        data = get_json_object(request)
        items = data.get("items") or []
        if not isinstance(items, list):
            raise ValidationError("items must be a list")

        kot = kot_service.create_kot(
            order_type=require_choice(data, "order_type", ORDER_TYPES, default="dine_in"),
            table_number=optional_str(data, "table_number", 32),
            delivery_platform=optional_str(data, "delivery_platform", 16),
            delivery_partner_name=optional_str(data, "delivery_partner_name", 128),
            customer_id=optional_int(data, "customer_id"),
            customer_name=optional_str(data, "customer_name", 255),
            customer_phone=optional_str(data, "customer_phone", 32),
            notes=optional_str(data, "notes"),
            items=[_parse_item(entry) for entry in items],
            user_id=g.identity.user_id,
        )
        return jsonify({"kot": kot.to_dict(include_items=True)}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create KOT")
        return jsonify({"error": "Internal server error"}), 500


@kots_bp.get("")
@require_identity
def list_kots_route():
    """List KOTs, newest first. Query: status, limit, offset."""
    try:
        status = request.args.get("status") or None
        if status is not None and status not in KOT_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(KOT_STATUSES)}")
        kots, total = kot_service.list_kots(
            status=status,
            limit=query_int(request.args, "limit", 100, minimum=1, maximum=500),
            offset=query_int(request.args, "offset", 0),
        )
        return jsonify({"kots": [k.to_dict() for k in kots], "total": total}), 200

    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list KOTs")
        return jsonify({"error": "Internal server error"}), 500


@kots_bp.get("/<int:kot_id>")
@require_identity
def get_kot_route(kot_id: int):
    try:
        kot = kot_service.get_kot(kot_id)
        return jsonify({"kot": kot.to_dict(include_items=True)}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get KOT")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ITEMS
# =============================================================================

@kots_bp.post("/<int:kot_id>/items")
@require_role(*ROLES)
def add_item_route(kot_id: int):
    """Add a line. Body: {"menu_item_id" | "product_id", "quantity", "notes"}."""
    try:
        entry = _parse_item(get_json_object(request))
        item = kot_service.add_item(kot_id, **entry)
        return jsonify({"item": item.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add KOT item")
        return jsonify({"error": "Internal server error"}), 500


@kots_bp.delete("/<int:kot_id>/items/<int:item_id>")
@require_role(*ROLES)
def remove_item_route(kot_id: int, item_id: int):
    try:
        kot_service.remove_item(kot_id, item_id)
        return jsonify({"removed": item_id}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove KOT item")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LIFECYCLE
# =============================================================================

@kots_bp.post("/<int:kot_id>/status")
@require_role(*ROLES)
def transition_route(kot_id: int):
    """
    Move a KOT forward. Body: {"status": "preparing" | "ready"}.

    served and cancelled have their own endpoints (/finalize, /cancel).
    """
    try:
        data = get_json_object(request)
        status = require_choice(data, "status", KOT_STATUSES)
        if status in ("served", "cancelled"):
            raise ValidationError("Use /finalize to serve and /cancel to cancel a KOT")
        kot = kot_service.transition(kot_id, status, user_id=g.identity.user_id)
        return jsonify({"kot": kot.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to change KOT status")
        return jsonify({"error": "Internal server error"}), 500


@kots_bp.post("/<int:kot_id>/payment")
@require_role(*ROLES)
def capture_payment_route(kot_id: int):
    """
    Record the tender for a KOT before it is served.

    Request body:
    {
        "payment_method": "cash" | "upi" | "card" | "split",
        "cash_amount_cents": 4000, "upi_amount_cents": 3000, "card_amount_cents": 3000  (split)
    }
    """
    try:
        data = get_json_object(request)
        kot = payment_service.capture_kot_payment(
            kot_id,
            require_choice(data, "payment_method", KOT_PAYMENT_METHODS),
            cash_cents=optional_amount(data, "cash_amount_cents"),
            upi_cents=optional_amount(data, "upi_amount_cents"),
            card_cents=optional_amount(data, "card_amount_cents"),
        )
        return jsonify({"kot": kot.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to capture KOT payment")
        return jsonify({"error": "Internal server error"}), 500


@kots_bp.post("/<int:kot_id>/finalize")
@require_role(*ROLES)
def finalize_route(kot_id: int):
    """
    Serve the KOT and generate its invoice.

    Request body (all optional):
    {
        "discount_cents": 500,  (manager/admin only)
        "discount_reason": "regular customer",
        "customer_id": 3,
        "due_date": "2024-02-15"
    }

    Returns:
        201: invoice, kot and stock warnings
        400: invalid lines / discount / split
        403: discount without manager role
        409: already served or cancelled
        503: concurrent update, retry
    """
    try:
        data = get_json_object(request)
        discount_cents = optional_amount(data, "discount_cents")
        if discount_cents and not g.identity.is_manager:
            return jsonify({
                "error": "Permission denied",
                "required_roles": [ROLE_ADMIN, ROLE_MANAGER],
            }), 403

        result = kot_service.finalize_kot(
            kot_id,
            discount_cents=discount_cents,
            discount_reason=optional_str(data, "discount_reason", 255),
            customer_id=optional_int(data, "customer_id"),
            due_date=optional_date(data, "due_date"),
            user_id=g.identity.user_id,
        )
        return jsonify(result.to_dict()), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to finalize KOT")
        return jsonify({"error": "Internal server error"}), 500


@kots_bp.post("/<int:kot_id>/cancel")
@require_role(*ROLES)
def cancel_route(kot_id: int):
    """Cancel an unserved KOT. Body: {"reason": "..."}."""
    try:
        data = get_json_object(request)
        kot = kot_service.cancel_kot(
            kot_id,
            reason=optional_str(data, "reason", 255),
            user_id=g.identity.user_id,
            pending_only=not g.identity.is_manager,
        )
        return jsonify({"kot": kot.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to cancel KOT")
        return jsonify({"error": "Internal server error"}), 500


@kots_bp.post("/<int:kot_id>/reverse")
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def reverse_route(kot_id: int):
    """Reverse a served KOT: drop its invoice, refund, restore stock."""
    try:
        data = get_json_object(request)
        result = kot_service.reverse_kot(
            kot_id, reason=optional_str(data, "reason", 255), user_id=g.identity.user_id
        )
        return jsonify(result.to_dict()), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to reverse KOT")
        return jsonify({"error": "Internal server error"}), 500


@kots_bp.delete("/<int:kot_id>")
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_route(kot_id: int):
    try:
        result = kot_service.delete_kot(kot_id, user_id=g.identity.user_id)
        return jsonify(result), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete KOT")
        return jsonify({"error": "Internal server error"}), 500
