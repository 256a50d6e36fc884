# Overview: Flask API routes for supplier purchases.

# backend/billing/routes/purchases.py
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_role
from ..errors import BillingError
from ..identity import ROLE_ADMIN, ROLE_MANAGER
from ..references import Reference
from ..services import payment_service, purchase_service
from ..validation import (
    ValidationError,
    get_json_object,
    optional_int,
    optional_str,
    optional_date,
    require_int,
)

purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


def _parse_line(entry) -> dict:
    if not isinstance(entry, dict):
        raise ValidationError("items must be a list of objects")
    return {
        "product_id": require_int(entry, "product_id"),
        "quantity": require_int(entry, "quantity"),
        "unit_price_cents": require_int(entry, "unit_price_cents"),
        "tax_rate_bps": optional_int(entry, "tax_rate_bps"),
    }


@purchases_bp.post("")
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_purchase_route():
    """
    Create a purchase order.

    Request body:
    {
        "supplier_id": 2,
        "order_date": "2024-01-10",  (optional)
        "expected_date": "2024-01-12",  (optional)
        "notes": "...",
        "items": [{"product_id": 5, "quantity": 5000, "unit_price_cents": 12, "tax_rate_bps": 500}]
    }
    """
    try:
        data = get_json_object(request)
        items = data.get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list")

        purchase = purchase_service.create_purchase(
            require_int(data, "supplier_id"),
            [_parse_line(entry) for entry in items],
            order_date=optional_date(data, "order_date"),
            expected_date=optional_date(data, "expected_date"),
            notes=optional_str(data, "notes"),
            user_id=g.identity.user_id,
        )
        return jsonify({"purchase": purchase.to_dict(include_lines=True)}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.get("/<int:purchase_id>")
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def get_purchase_route(purchase_id: int):
    try:
        purchase = purchase_service.get_purchase(purchase_id)
        return jsonify({"purchase": purchase.to_dict(include_lines=True)}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.post("/<int:purchase_id>/receive")
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def receive_purchase_route(purchase_id: int):
    try:
        data = get_json_object(request)
        purchase = purchase_service.receive_purchase(
            purchase_id,
            received_date=optional_date(data, "received_date"),
            user_id=g.identity.user_id,
        )
        return jsonify({"purchase": purchase.to_dict(include_lines=True)}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to receive purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.post("/<int:purchase_id>/cancel")
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def cancel_purchase_route(purchase_id: int):
    try:
        data = get_json_object(request)
        purchase = purchase_service.cancel_purchase(
            purchase_id,
            reason=optional_str(data, "reason", 255),
            user_id=g.identity.user_id,
        )
        return jsonify({"purchase": purchase.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to cancel purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.post("/<int:purchase_id>/payments")
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def add_purchase_payment_route(purchase_id: int):
    """Pay a supplier. Body matches invoice payments."""
    try:
        data = get_json_object(request)
        method = data.get("payment_method")
        if method is None:
            raise ValidationError("payment_method is required")

        parent = Reference.purchase(purchase_id)
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
        current_app.logger.exception("Failed to add purchase payment")
        return jsonify({"error": "Internal server error"}), 500
