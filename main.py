from flask import Flask, request, jsonify
from flask_cors import CORS
from commission_engine import DealService, HierarchyService, PaymentWorkflow
from commission_engine.config import Settings
from commission_engine.db import Database
from commission_engine.errors import CommissionError
from commission_engine.models import ConfirmPaymentInput, CreateCommissionInput, SubmitDealInput
from commission_engine.output import OutputBuilder
from werkzeug.exceptions import HTTPException
import logging

logger = logging.getLogger(__name__)


def create_app(database: Database | None = None, settings: Settings | None = None) -> Flask:
    """Build the API. Tests pass an in-memory Database; production reads the environment."""
    settings = settings or Settings.from_env()
    if database is None:
        database = Database(settings.database_url, echo=settings.sql_echo)
        database.create_all()

    app = Flask(__name__)

    # Admin dashboard and automation tools call the API cross-origin
    CORS(app)

    workflow = PaymentWorkflow(database)
    deals = DealService(database)
    hierarchy = HierarchyService(database)
    output = OutputBuilder()

    def body() -> dict:
        return request.get_json(silent=True) or {}

    @app.errorhandler(CommissionError)
    def handle_commission_error(error: CommissionError):
        logger.warning(f"Rejected {request.method} {request.path}: {error.code}: {error.message}")
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description, "status": "failed"}), error.code
        # Unexpected errors - log details but return a generic message
        logger.error(f"Unexpected error on {request.method} {request.path}: {str(error)}", exc_info=True)
        return jsonify({"error": "An unexpected error occurred", "status": "failed"}), 500

    @app.route("/api", methods=["GET"])
    def api_info():
        """API information endpoint"""
        return jsonify({
            "status": "ok",
            "message": "Partner Commission API",
            "version": "1.0",
            "environment": settings.environment,
            "endpoints": {
                "create_commission": "/api/admin/payments/create-commission [POST]",
                "preview_commission": "/api/admin/referrals/<deal_id>/preview-commission [POST]",
                "payment_status": "/api/admin/deals/<deal_id>/payment-status [GET]",
                "approve": "/api/admin/payments/<payment_id>/approve [POST]",
                "mark_paid": "/api/admin/payments/<payment_id>/mark-paid [POST]",
                "health": "/health [GET]"
            }
        }), 200

    @app.route("/health", methods=["GET"])
    def health():
        """Health check for monitoring"""
        return jsonify({"status": "healthy", "environment": settings.environment}), 200

    # -------------------------------------------------------------------------
    # Deals
    # -------------------------------------------------------------------------

    @app.route("/api/admin/deals", methods=["POST"])
    def submit_deal():
        deal = deals.submit_deal(SubmitDealInput.from_dict(body()))
        return jsonify({"success": True, "deal": output.deal(deal)}), 201

    @app.route("/api/admin/deals/<deal_id>/stage", methods=["POST"])
    def update_deal_stage(deal_id):
        data = body()
        deal = deals.advance_stage(deal_id, data.get("dealStage"), data.get("actorId"))
        return jsonify({"success": True, "deal": output.deal(deal)}), 200

    @app.route("/api/admin/deals/<deal_id>/payment-status", methods=["GET"])
    def payment_status(deal_id):
        report = workflow.get_payment_status(deal_id)
        return jsonify(output.payment_status(report)), 200

    @app.route("/api/admin/referrals/<deal_id>/preview-commission", methods=["POST"])
    def preview_commission(deal_id):
        data = body()
        distribution = workflow.preview_commission(
            deal_id, data.get("actualCommission"), data.get("currency") or settings.default_currency
        )
        deal = deals.get_deal(deal_id)
        return jsonify({"success": True, **output.distribution(distribution, deal)}), 200

    # -------------------------------------------------------------------------
    # Commission payments
    # -------------------------------------------------------------------------

    @app.route("/api/admin/payments/create-commission", methods=["POST"])
    def create_commission():
        data = body()
        if not data:
            return jsonify({"error": "No input data provided", "status": "failed"}), 400

        payment = workflow.create_commission(CreateCommissionInput.from_dict(data, settings.default_currency))
        return jsonify({
            "success": True,
            "message": "Commission created and sent to Payments for approval",
            "payment": output.payment(payment),
        }), 201

    @app.route("/api/admin/payments", methods=["GET"])
    def list_payments():
        payments = workflow.list_payments(request.args.get("status"), request.args.get("recipientId"))
        return jsonify([output.payment(payment) for payment in payments]), 200

    @app.route("/api/admin/payments/<payment_id>/details", methods=["GET"])
    def payment_details(payment_id):
        return jsonify(output.payment(workflow.get_payment(payment_id))), 200

    @app.route("/api/admin/payments/<payment_id>/submit", methods=["POST"])
    def submit_payment(payment_id):
        payment = workflow.submit_for_approval(payment_id, body().get("actorId"))
        return jsonify({"success": True, "payment": output.payment(payment)}), 200

    @app.route("/api/admin/payments/<payment_id>/approve", methods=["POST"])
    def approve_payment(payment_id):
        payment = workflow.approve(payment_id, body().get("actorId"))
        return jsonify({
            "success": True,
            "message": f"Payment approved with {len(payment.splits)} commission split(s)",
            "payment": output.payment(payment),
        }), 200

    @app.route("/api/admin/payments/<payment_id>/query", methods=["POST"])
    def query_payment(payment_id):
        data = body()
        payment = workflow.query(payment_id, data.get("actorId"), data.get("queryNotes"))
        return jsonify({"success": True, "message": "Query submitted successfully", "payment": output.payment(payment)}), 200

    @app.route("/api/admin/payments/<payment_id>/resolve-query", methods=["POST"])
    def resolve_query(payment_id):
        data = body()
        payment = workflow.resolve_query(payment_id, data.get("actorId"), data.get("notes"))
        return jsonify({"success": True, "payment": output.payment(payment)}), 200

    @app.route("/api/admin/payments/<payment_id>/mark-paid", methods=["POST"])
    def mark_paid(payment_id):
        payment = workflow.confirm_payment(payment_id, ConfirmPaymentInput.from_dict(body()))
        return jsonify({"success": True, "message": "Payment marked as paid", "payment": output.payment(payment)}), 200

    @app.route("/api/admin/payments/<payment_id>/fail", methods=["POST"])
    def fail_payment(payment_id):
        data = body()
        payment = workflow.fail(payment_id, data.get("actorId"), data.get("reason"))
        return jsonify({"success": True, "payment": output.payment(payment)}), 200

    # -------------------------------------------------------------------------
    # Partner hierarchy
    # -------------------------------------------------------------------------

    @app.route("/api/admin/partners/<user_id>/link", methods=["POST"])
    def link_partner(user_id):
        data = body()
        rows = hierarchy.link_partner(user_id, data.get("parentId"), data.get("actorId"))
        return jsonify({"success": True, "hierarchyRows": rows}), 200

    @app.route("/api/admin/hierarchy/rebuild", methods=["POST"])
    def rebuild_hierarchy():
        rows = hierarchy.rebuild()
        logger.info(f"Hierarchy rebuild requested by {body().get('actorId', 'unknown')}")
        return jsonify({"success": True, "hierarchyRows": rows}), 200

    return app


if __name__ == "__main__":
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    create_app(settings=settings).run(host="0.0.0.0", port=settings.port, debug=False)
