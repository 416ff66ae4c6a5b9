import logging

from flask import current_app, session
from supabase import create_client, Client

logger = logging.getLogger(__name__)


def create_admin_client(config) -> "Client | None":
    """
    Cria o cliente administrativo (service role) a partir da configuração.
    Retorna None quando o Supabase não está configurado.
    """
    url = config.get("SUPABASE_URL")
    key = config.get("SUPABASE_SERVICE_ROLE_KEY")
    anon_key = config.get("SUPABASE_ANON_KEY")

    # Log das configurações para debug (sem expor as chaves completas)
    logger.info("SUPABASE_CONFIG: URL presente: %s", bool(url))
    logger.info("SUPABASE_CONFIG: SERVICE_ROLE_KEY presente: %s", bool(key))
    logger.info("SUPABASE_CONFIG: ANON_KEY presente: %s", bool(anon_key))

    if not url or not key:
        logger.warning("SUPABASE_CONFIG: URL ou SERVICE_ROLE_KEY ausentes")
        return None

    if not key.startswith("eyJ"):
        logger.error("SUPABASE_CONFIG: SERVICE_KEY não parece ser um JWT válido")

    return create_client(url, key)


def init_supabase(app):
    """
    Registra o cliente administrativo em app.extensions.
    Sem credenciais, usa o cliente em memória de fallback_data.
    """
    client = create_admin_client(app.config)
    if client is None:
        from fallback_data import FallbackClient
        client = FallbackClient()
        app.logger.warning("SUPABASE não configurado - usando cliente em memória")
    app.extensions["supabase_admin"] = client
    return client


def get_admin_client():
    return current_app.extensions.get("supabase_admin")


def get_supabase_client():
    """
    Retorna cliente Supabase configurado com token do usuário atual (se disponível).
    Fallback para cliente administrativo.
    """
    admin = get_admin_client()

    user = session.get("user", {})
    access_token = user.get("access_token")
    url = current_app.config.get("SUPABASE_URL")
    anon_key = current_app.config.get("SUPABASE_ANON_KEY")

    if not access_token:
        current_app.logger.debug("SUPABASE_CLIENT: Sem access_token, usando cliente admin")
        return admin

    if not url or not anon_key:
        current_app.logger.warning("SUPABASE_CLIENT: ANON_KEY não configurada, usando cliente admin")
        return admin

    try:
        # Cliente autenticado com token do usuário (RLS ativo)
        client = create_client(url, anon_key)
        client.postgrest.auth(access_token)
        current_app.logger.debug("SUPABASE_CLIENT: Cliente autenticado criado com token")
        return client
    except Exception as e:
        current_app.logger.error("SUPABASE_CLIENT: Falha ao criar cliente autenticado: %s", e)

    current_app.logger.info("SUPABASE_CLIENT: Usando cliente administrativo (fallback)")
    return admin
