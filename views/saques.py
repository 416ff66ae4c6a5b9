# saques.py
from flask import Blueprint, current_app, request, jsonify, session

from data_utils.safe_pagination import safe_paginated_query
from models import Account, Withdrawal
from security_middleware import get_current_user_id, get_current_role, log_data_access
from services.backend_api import BackendAPIError, api_from_app
from supabase_client import get_supabase_client
from utils import login_required, admin_required

saques_bp = Blueprint("saques", __name__, url_prefix="/saques")

# Valor mínimo de uma solicitação manual
SAQUE_MINIMO = 50.0


def _api():
    token = (session.get("user") or {}).get("access_token")
    return api_from_app(current_app.config, token)


def _backend_error(e: BackendAPIError):
    """Erros 4xx do backend voltam como estão; o resto vira 502."""
    status = e.status_code if e.status_code and 400 <= e.status_code < 500 else 502
    message = str(e)
    if isinstance(e.payload, dict) and e.payload.get("error"):
        message = e.payload["error"]
    return jsonify({"success": False, "message": message}), status


def _load_account(client, user_id):
    result = client.table("users").select("*").eq("id", user_id).limit(1).execute()
    return Account.from_row(result.data[0]) if result.data else None


@saques_bp.route("", methods=["GET"])
@login_required
def listar():
    """Admin vê todos os saques; usuário só os próprios. Pendentes primeiro."""
    uid = get_current_user_id()
    filters = {} if get_current_role() == "admin" else {"user_id": uid}
    rows = safe_paginated_query(get_supabase_client(), "saques", "*", filters=filters)
    log_data_access("saques", "SELECT", uid, len(rows))

    saques = [Withdrawal.from_row(r) for r in rows]
    saques.sort(key=lambda s: (s.status != "pendente", -(s.requested_at.timestamp() if s.requested_at else 0)))
    return jsonify({
        "success": True,
        "saques": [{
            "id": s.id,
            "user_id": s.account_id,
            "valor": s.amount,
            "status": s.status,
            "chave_pix": s.pix_key,
            "data_solicitacao": s.requested_at.isoformat() if s.requested_at else None,
        } for s in saques],
    })


@saques_bp.route("", methods=["POST"])
@login_required
def solicitar():
    data = request.get_json(silent=True) or {}
    uid = get_current_user_id()

    try:
        valor = round(float(data.get("valor")), 2)
    except (TypeError, ValueError):
        return jsonify({"success": False, "message": "Valor inválido."}), 400

    chave_pix = (data.get("chave_pix") or "").strip()
    if not chave_pix:
        return jsonify({"success": False, "message": "Informe sua chave PIX para receber o saque."}), 400
    if valor < SAQUE_MINIMO:
        return jsonify({"success": False, "message": "Valor mínimo para saque: R$ 50,00."}), 400

    account = _load_account(get_supabase_client(), uid)
    if account is None or valor > account.balance:
        current_app.logger.warning("SAQUES: Saldo insuficiente - user_id: %s, valor: %.2f", uid, valor)
        return jsonify({"success": False, "message": "Saldo insuficiente."}), 400

    try:
        result = _api().request_withdrawal(valor, chave_pix)
    except BackendAPIError as e:
        current_app.logger.error("SAQUES: Falha ao solicitar saque de %s: %s", uid, e)
        return _backend_error(e)

    current_app.logger.info("SAQUES: Saque solicitado - user_id: %s, valor: %.2f", uid, valor)
    return jsonify({"success": True, "saque": result}), 201


@saques_bp.route("/<saque_id>/aprovar", methods=["PATCH"])
@admin_required
def aprovar(saque_id):
    try:
        result = _api().approve_withdrawal(saque_id)
    except BackendAPIError as e:
        current_app.logger.error("SAQUES: Falha ao aprovar saque %s: %s", saque_id, e)
        return _backend_error(e)
    current_app.logger.info("SAQUES: Saque %s aprovado por %s", saque_id, get_current_user_id())
    return jsonify({"success": True, "saque": result})


@saques_bp.route("/<saque_id>/rejeitar", methods=["PATCH"])
@admin_required
def rejeitar(saque_id):
    data = request.get_json(silent=True) or {}
    note = (data.get("observacoes_admin") or "Rejeitado pelo admin").strip()
    try:
        result = _api().reject_withdrawal(saque_id, note)
    except BackendAPIError as e:
        current_app.logger.error("SAQUES: Falha ao rejeitar saque %s: %s", saque_id, e)
        return _backend_error(e)
    current_app.logger.info("SAQUES: Saque %s rejeitado por %s", saque_id, get_current_user_id())
    return jsonify({"success": True, "saque": result})


@saques_bp.route("/automatico", methods=["PATCH"])
@login_required
def configurar_automatico():
    data = request.get_json(silent=True) or {}
    enabled = bool(data.get("ativo"))
    uid = get_current_user_id()
    get_supabase_client().table("users").update({"saque_automatico": enabled}).eq("id", uid).execute()
    current_app.logger.info("SAQUES: Saque automático %s - user_id: %s",
                            "ativado" if enabled else "desativado", uid)
    return jsonify({"success": True, "saque_automatico": enabled})


@saques_bp.route("/automaticos", methods=["GET"])
@admin_required
def candidatos_automaticos():
    """Contas com saque automático ligado e saldo acima do mínimo configurado."""
    minimo = float(current_app.config.get("SAQUE_AUTOMATICO_MINIMO", 50))
    rows = safe_paginated_query(get_supabase_client(), "users", "*", filters={
        "saque_automatico": True,
        "saldo": {"operator": "gte", "value": minimo},
    })
    accounts = [Account.from_row(r) for r in rows]
    return jsonify({
        "success": True,
        "minimo": minimo,
        "contas": [{"id": a.id, "nome": a.display_name, "saldo": a.balance, "chave_pix": a.pix_key}
                   for a in accounts],
    })
