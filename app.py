from flask import Flask, redirect, url_for
from config import Config
from cache_manager import init_cache
from supabase_client import init_supabase
from conciliacao import RequestSequencer
from views.auth import auth_bp
from views.dashboard import dash_bp
from views.pagamentos import pagamentos_bp
from views.saques import saques_bp
from views.wireguard import wireguard_bp
# 🚨 SEGURANÇA: auditoria de acesso por usuário
from security_middleware import init_security_middleware


def create_app(config_object=Config, supabase_client=None):
    """
    Fábrica da aplicação.

    Args:
        config_object: classe/objeto de configuração
        supabase_client: cliente injetado (testes); sem ele, cria o cliente
            administrativo a partir da configuração
    """
    app = Flask(__name__)
    app.config.from_object(config_object)

    if supabase_client is not None:
        app.extensions["supabase_admin"] = supabase_client
    else:
        init_supabase(app)

    init_cache(app)

    # número de sequência das requisições de rollup, por usuário
    app.extensions["rollup_sequencer"] = RequestSequencer()

    init_security_middleware(app)

    for bp in (auth_bp, dash_bp, pagamentos_bp, saques_bp, wireguard_bp):
        app.register_blueprint(bp)

    @app.route('/')
    def index():
        return redirect(url_for('dashboard.rollup'))

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=int(app.config.get("PORT", 3001)), debug=True)
