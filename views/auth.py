# ===============================================
# AUTENTICAÇÃO (Supabase Auth + tabela users)
# ===============================================

from datetime import datetime, timedelta

from dateutil import tz
from flask import Blueprint, request, session, current_app, jsonify

from cache_manager import invalidate_user_cache
from models import Account
from supabase_client import get_admin_client

auth_bp = Blueprint('auth', __name__)

# Duração do plano de teste quando subscription_plans não informa
DIAS_TESTE_PADRAO = 7

# ---------------- Helpers ----------------

def _payload():
    """Aceita JSON ou formulário."""
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    return data or {}


def _auth_api():
    client = get_admin_client()
    return client, getattr(client, "auth", None)


def _access_token(auth_response):
    sess = getattr(auth_response, "session", None)
    return getattr(sess, "access_token", None)


def load_account(client, user_id: str):
    """Linha da tabela users como Account (None se não existir)."""
    result = client.table("users").select("*").eq("id", user_id).limit(1).execute()
    if not result.data:
        return None
    return Account.from_row(result.data[0])


def activate_trial(client, user_id: str, now: datetime = None):
    """
    Ativa o plano de teste para uma conta nova.
    Retorna a linha inserida em user_subscriptions, ou None se não houver plano de teste.
    """
    now = now or datetime.now(tz.UTC)
    plans = client.table("subscription_plans").select("id, name, price, duration_days").execute()
    trial = None
    for plan in plans.data or []:
        name = (plan.get("name") or "").lower()
        if "teste" in name or "trial" in name or plan.get("price") in (0, "0"):
            trial = plan
            break

    if not trial:
        current_app.logger.warning("AUTH: Nenhum plano de teste cadastrado - conta %s sem assinatura", user_id)
        return None

    days = int(trial.get("duration_days") or DIAS_TESTE_PADRAO)
    row = {
        "user_id": user_id,
        "plan_id": trial["id"],
        "status": "active",
        "starts_at": now.isoformat(),
        "expires_at": (now + timedelta(days=days)).isoformat(),
    }
    inserted = client.table("user_subscriptions").insert(row).execute()
    current_app.logger.info("AUTH: Plano de teste ativado para %s (%d dias)", user_id, days)
    return (inserted.data or [row])[0]


def _start_session(account: Account, access_token):
    session.clear()
    session['user'] = {
        'id': account.id,
        'nome': account.display_name,
        'email': account.email,
        'role': account.role,
        'access_token': access_token,
    }

# ---------------- Routes ----------------

@auth_bp.route('/login', methods=['POST'])
def login():
    data = _payload()
    email = (data.get('email') or '').strip().lower()
    senha = (data.get('senha') or data.get('password') or '').strip()

    if '@' not in email or not senha:
        return jsonify({"success": False, "message": "Informe e-mail e senha."}), 400

    client, auth = _auth_api()
    if auth is None:
        current_app.logger.error("AUTH: Supabase Auth indisponível")
        return jsonify({"success": False, "message": "Sistema de autenticação indisponível."}), 503

    try:
        response = auth.sign_in_with_password({"email": email, "password": senha})
    except Exception as e:
        current_app.logger.warning("AUTH: Falha de login para %s: %s", email, e)
        return jsonify({"success": False, "message": "E-mail ou senha inválidos."}), 401

    user = getattr(response, "user", None)
    if not user:
        return jsonify({"success": False, "message": "E-mail ou senha inválidos."}), 401

    account = load_account(client, str(user.id))
    if account is None:
        current_app.logger.error("AUTH: user %s autenticado sem linha em users", user.id)
        return jsonify({"success": False, "message": "Conta não encontrada."}), 404

    _start_session(account, _access_token(response))
    current_app.logger.info("AUTH: LOGIN SUCESSO - user_id: %s, email: %s, role: %s",
                            account.id, account.email, account.role)
    return jsonify({"success": True, "user": {"id": account.id, "nome": account.display_name,
                                              "role": account.role}})


@auth_bp.route('/register', methods=['POST'])
def register():
    data = _payload()
    nome = (data.get('nome') or '').strip()
    email = (data.get('email') or '').strip().lower()
    senha = (data.get('senha') or data.get('password') or '').strip()

    if not nome:
        return jsonify({"success": False, "message": "Informe seu nome."}), 400
    if '@' not in email:
        return jsonify({"success": False, "message": "E-mail inválido."}), 400
    if len(senha) < 6:
        return jsonify({"success": False, "message": "A senha deve ter ao menos 6 caracteres."}), 400

    client, auth = _auth_api()
    if auth is None:
        current_app.logger.error("AUTH: Supabase Auth indisponível")
        return jsonify({"success": False, "message": "Sistema de autenticação indisponível."}), 503

    try:
        response = auth.sign_up({"email": email, "password": senha, "options": {"data": {"nome": nome}}})
    except Exception as e:
        current_app.logger.warning("AUTH: Falha no cadastro de %s: %s", email, e)
        return jsonify({"success": False, "message": "Não foi possível criar a conta."}), 400

    user = getattr(response, "user", None)
    if not user:
        return jsonify({"success": False, "message": "Não foi possível criar a conta."}), 400

    user_id = str(user.id)
    row = {"id": user_id, "nome": nome, "email": email, "role": "user", "saldo": 0}
    existing = client.table("users").select("id").eq("id", user_id).limit(1).execute()
    if existing.data:
        # linha criada por trigger
        client.table("users").update({"nome": nome, "email": email}).eq("id", user_id).execute()
    else:
        client.table("users").insert(row).execute()

    activate_trial(client, user_id)

    account = Account.from_row(row)
    _start_session(account, _access_token(response))
    current_app.logger.info("AUTH: CADASTRO - user_id: %s, email: %s", user_id, email)
    return jsonify({"success": True, "user": {"id": user_id, "nome": nome, "role": "user"}}), 201


@auth_bp.route('/logout', methods=['POST'])
def logout():
    user = session.get('user', {})
    current_app.logger.info("AUTH: LOGOUT - user_id: %s, email: %s",
                            user.get('id'), user.get('email'))
    # diretórios em cache pertencem à sessão que termina
    invalidate_user_cache('mikrotiks_acessiveis', "admin" if user.get('role') == "admin" else "user")
    invalidate_user_cache('assinatura')
    session.clear()
    return jsonify({"success": True})
