import logging

from flask import Flask, jsonify
from routes import register_blueprints
from services.signing import SigningService

logger = logging.getLogger(__name__)


def create_app(config_object='config.Config', **overrides):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.config.update(overrides)

    # Initialize signing service (mock mode without an OpenSign URL)
    service = SigningService.from_config(app.config)
    app.extensions['signing_service'] = service
    if service.is_mock_mode:
        logger.info("Signing service running against the in-memory backend")

    # Register blueprints
    register_blueprints(app)

    @app.route('/health')
    def health():
        cache = service.cache
        return jsonify({
            'status': 'ok',
            'mock_mode': service.is_mock_mode,
            'cache_state': cache.state.value,
        })

    return app


if __name__ == '__main__':
    from config import Config
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
    app = create_app()
    app.run(host='0.0.0.0', port=5005, debug=Config.FLASK_ENV == 'development')
