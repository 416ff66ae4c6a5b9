# security_middleware.py
"""
🚨 MIDDLEWARE DE SEGURANÇA
Identifica o usuário da sessão e audita o acesso às rotas de dados.
"""

from flask import g, session, current_app, request
import time

# rotas cujos acessos vão para o log de auditoria
ROTAS_AUDITADAS = ('dashboard', 'saques', 'wireguard', 'pagamentos')


def get_current_user_id():
    """user_id da sessão (tabela users / Supabase Auth), ou None."""
    from utils import is_logged
    if not is_logged():
        return None

    user_id = (session.get("user") or {}).get("id")
    if not user_id:
        current_app.logger.error("❌ USER_ID É NONE - sessão inválida")
    return user_id


def get_current_role():
    """Papel do usuário da sessão: 'admin' ou 'user'."""
    user = session.get("user") or {}
    return "admin" if user.get("role") == "admin" else "user"


def log_data_access(table_name, action, user_id=None, record_count=None):
    """AUDITORIA: leitura ou escrita de uma tabela pela requisição atual."""
    current_app.logger.info("AUDIT: %s em %s - user_id: %s - registros: %s - endpoint: %s",
                            action, table_name, user_id or get_current_user_id(),
                            record_count, request.endpoint)


class SecurityError(Exception):
    """Violação de posse: recurso fora do alcance do usuário da sessão."""
    pass


def restrict_to_owned_devices(devices, requested_id=None, user_id=None):
    """
    VALIDAÇÃO: limita a consulta ao mikrotik pedido, que precisa estar entre
    os acessíveis ao usuário. Sem pedido, devolve a lista inteira.
    """
    if not requested_id:
        return list(devices)

    selected = [d for d in devices if str(d.id) == str(requested_id)]
    if not selected:
        current_app.logger.error("SECURITY: TENTATIVA DE ACESSO INDEVIDO - user_id: %s pediu o mikrotik %s",
                                 user_id or get_current_user_id(), requested_id)
        raise SecurityError("Acesso negado: mikrotik não pertence ao usuário")
    return selected


def init_security_middleware(app):
    """Registra a auditoria por requisição."""

    @app.before_request
    def security_before_request():
        endpoint = request.endpoint or ""
        if endpoint.startswith('static'):
            return
        user_id = get_current_user_id()
        if not user_id:
            return
        g.current_user_id = user_id
        g.security_check_time = time.time()
        if endpoint.split('.')[0] in ROTAS_AUDITADAS:
            app.logger.info("AUDIT: %s acessado por user_id: %s", endpoint, user_id)

    @app.after_request
    def security_after_request(response):
        if 'current_user_id' in g:
            app.logger.info("AUDIT: Requisição concluída - user_id: %s - duração: %.3fs - status: %s",
                            g.current_user_id, time.time() - g.security_check_time, response.status_code)
        return response

    app.logger.info("SECURITY: Middleware de segurança inicializado")
