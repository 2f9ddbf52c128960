from .documents import documents_bp
from .bulk_send import bulk_send_bp
from .errors import register_error_handlers

def register_blueprints(app):
    app.register_blueprint(documents_bp)
    app.register_blueprint(bulk_send_bp)
    register_error_handlers(app)
