"""
Observability routes: PII pattern source and breadcrumb trail.

Endpoints:
    GET    /api/observability/pii-patterns   active pattern set (the format
           ``Logger`` fetches from ``PII_PATTERNS_URL``)
    GET    /api/observability/breadcrumbs    current breadcrumb trail
    POST   /api/observability/breadcrumbs    append one breadcrumb
    DELETE /api/observability/breadcrumbs    clear the trail
"""

from flask import Blueprint, jsonify, request

from ..observability.breadcrumbs import BreadcrumbManager, breadcrumb_from_dict
from ..observability.logging import Logger
from ..observability.patterns import PiiPattern
from ..observability.pii import DEFAULT_PII_PATTERNS

observability_bp = Blueprint("observability", __name__)


# ── PII patterns ─────────────────────────────────────────────────


@observability_bp.route("/api/observability/pii-patterns")
def pii_patterns():
    """Serve the logger's patterns, or the defaults before it is initialized."""
    log = Logger()
    patterns = log.patterns if log.initialized and log.patterns else DEFAULT_PII_PATTERNS
    return jsonify(
        [p.to_dict() if isinstance(p, PiiPattern) else dict(p) for p in patterns]
    )


# ── Breadcrumbs ──────────────────────────────────────────────────


@observability_bp.route("/api/observability/breadcrumbs")
def breadcrumbs_list():
    crumbs = BreadcrumbManager().get_all()
    return jsonify({"breadcrumbs": [c.to_dict() for c in crumbs]})


@observability_bp.route("/api/observability/breadcrumbs", methods=["POST"])
def breadcrumbs_add():
    """Validate and append one breadcrumb in its wire form."""
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({"error": "JSON body required"}), 400
    try:
        event = breadcrumb_from_dict(data)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    manager = BreadcrumbManager()
    manager.add(event)
    return jsonify({"status": "recorded", "count": len(manager.get_all())}), 201


@observability_bp.route("/api/observability/breadcrumbs", methods=["DELETE"])
def breadcrumbs_clear():
    BreadcrumbManager().clear()
    return jsonify({"status": "cleared"})
