# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/billing/routes/inventory.py
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_identity, require_role
from ..errors import BillingError
from ..identity import ROLE_ADMIN, ROLE_MANAGER
from ..services import inventory_service
from ..validation import get_json_object, require_int, optional_str, query_int

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/low-stock")
@require_identity
def low_stock_route():
    try:
        products = inventory_service.list_low_stock()
        return jsonify({"products": [p.to_dict() for p in products]}), 200
    except Exception:
        current_app.logger.exception("Failed to list low stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/verify")
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def verify_route():
    """
    Compare cached stock with the movement log for every product.

    Mismatches are reported, never corrected here (see `flask ledger rebuild`).
    """
    try:
        mismatches = inventory_service.verify_all_stock()
        return jsonify({"ok": not mismatches, "mismatches": mismatches}), 200
    except Exception:
        current_app.logger.exception("Failed to verify stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<int:product_id>")
@require_identity
def stock_route(product_id: int):
    """Current stock (cache) and ledger sum for one product."""
    try:
        return jsonify({
            "product_id": product_id,
            "stock_quantity": inventory_service.current_stock(product_id),
            "ledger_quantity": inventory_service.ledger_stock(product_id),
        }), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<int:product_id>/movements")
@require_identity
def movements_route(product_id: int):
    try:
        limit = query_int(request.args, "limit", 100, minimum=1, maximum=1000)
        movements = inventory_service.list_movements(product_id, limit=limit)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list movements")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/<int:product_id>/adjust")
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def adjust_route(product_id: int):
    """
    Manual stock adjustment.

    Request body:
    {
        "quantity_delta": -250,  (base units, non-zero)
        "note": "spillage"
    }
    """
    try:
        data = get_json_object(request)
        movement, warnings = inventory_service.adjust_stock(
            product_id,
            require_int(data, "quantity_delta"),
            note=optional_str(data, "note", 255),
            user_id=g.identity.user_id,
        )
        return jsonify({
            "movement": movement.to_dict(),
            "stock_quantity": inventory_service.current_stock(product_id),
            "warnings": warnings,
        }), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500
