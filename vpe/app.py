import os

import structlog
from flask import Flask, jsonify
from redis import Redis

from vpe.config import Config
from vpe.db import init_db
from vpe.exceptions import ServiceException
from vpe.registry import Registry
from vpe.routes.hosts import hosts_bp
from vpe.routes.images import images_bp
from vpe.routes.leases import leases_bp
from vpe.routes.transfers import transfers_bp
from vpe.routes.users import users_bp
from vpe.routes.vms import vms_bp
from vpe.routes.vmtypes import vmtypes_bp
from vpe.routes.vnets import vnets_bp
from vpe.routes.zones import zones_bp
from vpe.services.one_client import OneClient
from vpe.services.transfer_sweeper import TransferSweeper

LOGGER = structlog.get_logger("vpe.app")


def create_app(config_overrides=None, one_client=None):
    """
    Build the Flask app. `one_client` replaces the orchestrator client
    built from ONE_ENDPOINT/ONE_TIMEOUT.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    os.makedirs(app.config['VAR_PATH'], exist_ok=True)
    os.makedirs(app.config['TRANSFER_STORAGE_PATH'], exist_ok=True)
    init_db(app)

    one_client = one_client or OneClient(app.config['ONE_ENDPOINT'], app.config['ONE_TIMEOUT'])
    registry = Registry.build(one_client, app.config)
    app.extensions['vpe'] = registry

    # Register blueprints
    app.register_blueprint(users_bp, url_prefix='/users')
    app.register_blueprint(zones_bp, url_prefix='/zones')
    app.register_blueprint(vnets_bp, url_prefix='/vnets')
    app.register_blueprint(leases_bp, url_prefix='/leases')
    app.register_blueprint(vmtypes_bp, url_prefix='/vmtypes')
    app.register_blueprint(images_bp, url_prefix='/images')
    app.register_blueprint(hosts_bp, url_prefix='/hosts')
    app.register_blueprint(vms_bp, url_prefix='/vms')
    app.register_blueprint(transfers_bp, url_prefix='/transfers')

    # Errors raised before an operation reaches its gate
    @app.errorhandler(ServiceException)
    def handle_service_exception(error):
        response = {
            'ok': False,
            'result': str(error),
            'error_code': error.error_code,
        }
        return jsonify(response), error.status_code

    @app.errorhandler(500)
    def handle_internal_error(error):
        return jsonify({'ok': False, 'result': 'Internal server error'}), 500

    if app.config['START_SWEEPER']:
        redis_client = Redis.from_url(app.config['REDIS_URL']) if app.config.get('REDIS_URL') else None
        registry.sweeper = TransferSweeper(app,
                                           interval=app.config['TRANSFER_CLEAN_INTERVAL'],
                                           life_time=app.config['TRANSFER_SESSION_LIFE_TIME'],
                                           redis_client=redis_client)
        registry.sweeper.start()

    LOGGER.info("app created", one_endpoint=app.config['ONE_ENDPOINT'],
                database=app.config['SQLALCHEMY_DATABASE_URI'])
    return app
