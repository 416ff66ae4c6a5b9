# pagamentos.py
from flask import Blueprint, current_app, request, jsonify, session

from security_middleware import get_current_user_id
from services.backend_api import BackendAPIError, api_from_app
from utils import login_required

pagamentos_bp = Blueprint("pagamentos", __name__, url_prefix="/pagamentos")


@pagamentos_bp.route("", methods=["POST"])
@login_required
def criar():
    """Gera a cobrança PIX de um plano: {planId} -> {paymentId, qrCode, pixCode, amount, expiresAt}."""
    data = request.get_json(silent=True) or {}
    plan_id = data.get("planId") or data.get("plan_id")
    if not plan_id:
        return jsonify({"success": False, "message": "Informe o plano."}), 400

    token = (session.get("user") or {}).get("access_token")
    try:
        payment = api_from_app(current_app.config, token).create_payment(plan_id)
    except BackendAPIError as e:
        current_app.logger.error("PAGAMENTOS: Falha ao gerar PIX do plano %s para %s: %s",
                                 plan_id, get_current_user_id(), e)
        status = e.status_code if e.status_code and 400 <= e.status_code < 500 else 502
        return jsonify({"success": False, "message": "Não foi possível gerar o pagamento PIX."}), status

    current_app.logger.info("PAGAMENTOS: PIX %s gerado - user_id: %s, valor: %s",
                            payment.get("paymentId"), get_current_user_id(), payment.get("amount"))
    return jsonify({"success": True, **payment}), 201
