"""
BloodNet - Flask application
Blood request and surplus offer coordination between donors, hospitals and blood banks
"""
import logging

from flask import Flask, jsonify

from bloodnet.api import api
from bloodnet.config import Config
from bloodnet.engine import BloodNet
from bloodnet.store import DynamoStore
from bloodnet.users import ensure_admin


def create_app(config_object=None, store=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='[%(asctime)s] %(levelname)s %(name)s: %(message)s',
    )

    engine = BloodNet.from_config(config_object or Config, store=store)
    app.extensions['bloodnet'] = engine
    ensure_admin(engine.store, app.config['ADMIN_EMAIL'])

    app.register_blueprint(api)

    @app.route('/health')
    def health():
        return jsonify({'success': True, 'store': type(engine.store).__name__})

    @app.cli.command('init-tables')
    def init_tables():
        """Create the DynamoDB tables used by the store"""
        if not isinstance(engine.store, DynamoStore):
            print("STORE_BACKEND is not dynamodb, nothing to create")
            return
        engine.store.create_tables()
        print("DynamoDB tables ready")

    app.logger.info("BloodNet started with %s", type(engine.store).__name__)
    return app


if __name__ == '__main__':
    create_app().run(debug=True, host='0.0.0.0', port=5000)
