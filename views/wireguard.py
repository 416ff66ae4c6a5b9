# wireguard.py
"""Proxy autenticado para o controlador WireGuard do backend MikroPix."""
from flask import Blueprint, current_app, request, jsonify, session

from services.backend_api import BackendAPIError, api_from_app
from utils import login_required, admin_required

wireguard_bp = Blueprint("wireguard", __name__, url_prefix="/wireguard")


def _api():
    token = (session.get("user") or {}).get("access_token")
    return api_from_app(current_app.config, token)


def _call(action, *args):
    try:
        return jsonify({"success": True, "data": action(*args)})
    except BackendAPIError as e:
        current_app.logger.error("WIREGUARD: %s falhou: %s", action.__name__, e)
        status = e.status_code if e.status_code and 400 <= e.status_code < 500 else 502
        return jsonify({"success": False, "message": str(e)}), status


@wireguard_bp.route("/peers", methods=["GET"])
@login_required
def peers():
    return _call(_api().list_peers)


@wireguard_bp.route("/peers", methods=["POST"])
@login_required
def criar_peer():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or data.get("nome") or "").strip()
    if not name:
        return jsonify({"success": False, "message": "Informe o nome do peer."}), 400
    return _call(_api().create_peer, name, data.get("mikrotik_id"))


@wireguard_bp.route("/peers/<path:public_key>", methods=["DELETE"])
@admin_required
def remover_peer(public_key):
    return _call(_api().delete_peer, public_key)


@wireguard_bp.route("/interface", methods=["GET"])
@login_required
def interface():
    return _call(_api().interface)


@wireguard_bp.route("/stats", methods=["GET"])
@login_required
def stats():
    return _call(_api().stats)
