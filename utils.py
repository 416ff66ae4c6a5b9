from functools import wraps
from flask import session, current_app, jsonify

def is_logged():
    user = session.get("user")
    if not user:
        current_app.logger.debug("IS_LOGGED: Sem user na sessão")
        return False

    has_id = bool(user.get("id"))
    has_email = "@" in (user.get("email") or "")

    return has_id and has_email

def is_admin():
    user = session.get("user") or {}
    return is_logged() and user.get("role") == "admin"

def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not is_logged():
            return jsonify({"success": False, "message": "Sessão expirada. Faça login novamente."}), 401
        return view(*args, **kwargs)
    return wrapped

def admin_required(view):
    """Decorator para rotas que requerem acesso de admin"""
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not is_logged():
            return jsonify({"success": False, "message": "Sessão expirada. Faça login novamente."}), 401
        if not is_admin():
            user = session.get("user") or {}
            current_app.logger.warning("ADMIN_ACCESS_DENIED: User %s tentou acessar área administrativa",
                                       user.get("email", "UNKNOWN"))
            return jsonify({"success": False, "message": "Acesso restrito a administradores"}), 403
        return view(*args, **kwargs)
    return wrapped
