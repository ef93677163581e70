"""
Partner Wallet Ledger Service - Flask Application
=================================================

Application factory for the wallet ledger service: reversal API, scheme
management and charge resolution over a single relational ledger.

Run with:  flask --app app run
CLI:       flask --app app init-db | create-admin | reconcile-reversals
"""

import os
import uuid
import logging
import logging.config
from datetime import datetime

import click
from flask import Flask, jsonify
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_migrate import Migrate
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from config.settings import config
from models import db, User, UserRoleType
from services.registry import LedgerServices, init_services
from services.reversal_reconciler import ReversalReconciler
from utils.errors import LedgerServiceError
from utils.permissions import load_user_from_request

APP_VERSION = '1.0.0'

# =============================================================================
# EXTENSIONS
# =============================================================================

migrate = Migrate()
login_manager = LoginManager()
limiter = Limiter(key_func=get_remote_address)

# =============================================================================
# FLASK APPLICATION FACTORY
# =============================================================================

def create_app(config_name=None):
    """
    Application factory pattern for creating Flask app instances
    """
    app = Flask(__name__)

    config_name = config_name or os.environ.get('FLASK_ENV', 'default')
    app.config.from_object(config[config_name])

    # Handle reverse proxy (if behind nginx/apache); remote_addr feeds the audit log
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    init_extensions(app)
    init_services(app)
    register_blueprints(app)
    register_error_handlers(app)
    register_request_handlers(app)
    setup_logging(app)
    register_cli_commands(app)

    return app


def init_extensions(app):
    """Initialize Flask extensions"""
    db.init_app(app)
    migrate.init_app(app, db)

    # API key authentication; there is no session login
    login_manager.init_app(app)
    login_manager.request_loader(load_user_from_request)

    limiter.init_app(app)
    CORS(app, origins=app.config['CORS_ORIGINS'])


@login_manager.user_loader
def load_user(user_id):
    try:
        return db.session.get(User, uuid.UUID(str(user_id)))
    except ValueError:
        return None

# =============================================================================
# BLUEPRINT REGISTRATION
# =============================================================================

def register_blueprints(app):
    from routes.reversal import reversal_bp
    from routes.schemes import schemes_bp

    app.register_blueprint(reversal_bp)
    app.register_blueprint(schemes_bp)

    @app.route('/api/health')
    @limiter.limit("100 per minute")
    def health_check():
        """API health check endpoint"""
        try:
            db.session.execute(text('SELECT 1'))
            db_status = 'healthy'
        except SQLAlchemyError as e:
            db.session.rollback()
            db_status = f'unhealthy: {str(e)}'

        return jsonify({
            'status': 'healthy' if db_status == 'healthy' else 'unhealthy',
            'timestamp': datetime.utcnow().isoformat(),
            'database': db_status,
            'version': APP_VERSION
        }), 200 if db_status == 'healthy' else 503

# =============================================================================
# ERROR HANDLERS
# =============================================================================

def register_error_handlers(app):
    """Render every error as JSON"""

    @app.errorhandler(LedgerServiceError)
    def handle_service_error(error):
        if error.status_code >= 500:
            db.session.rollback()
            app.logger.error(f'Service error: {error.message} {error.context or ""}')
        else:
            app.logger.info(f'Request rejected ({error.status_code}): {error.message}')
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        return jsonify({'success': False, 'error': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions"""
        db.session.rollback()
        app.logger.error(f'Unhandled Exception: {error}', exc_info=True)

        body = {'success': False, 'error': 'An unexpected error occurred'}
        if app.config.get('EXPOSE_ERROR_DETAIL'):
            body['detail'] = str(error)
        return jsonify(body), 500

# =============================================================================
# REQUEST HANDLERS
# =============================================================================

def register_request_handlers(app):

    @app.after_request
    def after_request(response):
        """Add security headers"""
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        return response

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(app):
    """Apply the dictConfig from settings outside debug and testing"""
    if app.debug or app.testing:
        return

    log_dir = os.path.dirname(app.config['LOG_FILE'])
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir)

    logging.config.dictConfig(app.config['LOGGING_CONFIG'])
    app.logger.setLevel(app.config['LOG_LEVEL'])
    app.logger.info('Wallet ledger service startup')

# =============================================================================
# CLI COMMANDS
# =============================================================================

def register_cli_commands(app):
    """Register CLI commands for database management and reconciliation"""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables."""
        db.create_all()
        click.echo('Database tables created successfully')

    @app.cli.command('create-admin')
    @click.argument('user_code')
    @click.argument('full_name')
    @click.option('--super-admin', is_flag=True, help='Create a SUPER_ADMIN instead of ADMIN')
    def create_admin(user_code, full_name, super_admin):
        """Create an admin user and print its API key."""
        if User.query.filter_by(user_code=user_code).first():
            raise click.ClickException(f'User {user_code} already exists')

        admin = User(
            user_code=user_code,
            full_name=full_name,
            role=UserRoleType.SUPER_ADMIN if super_admin else UserRoleType.ADMIN,
            is_active=True,
        )
        api_key = admin.generate_api_key()
        db.session.add(admin)
        db.session.commit()

        click.echo(f'Admin {user_code} created ({admin.role.value})')
        click.echo(f'API key: {api_key}')

    @app.cli.command('reconcile-reversals')
    @click.option('--stuck-after', type=int, default=None,
                  help='Minutes a reversal may stay PROCESSING (default from config)')
    def reconcile_reversals(stuck_after):
        """Resolve stuck reversals and list open fan-out cases."""
        services = LedgerServices(db.session, app.config)
        reconciler = services.reconciler
        if stuck_after is not None:
            reconciler = ReversalReconciler(
                db.session, services.ledger, services.audit, stuck_after_minutes=stuck_after
            )

        summary = reconciler.run()
        click.echo(
            f"Reversals: {summary['scanned']} scanned, {summary['completed']} completed, "
            f"{summary['failed']} failed, {len(summary['errors'])} errors"
        )
        for item in summary['reversals']:
            click.echo(f"  {item['reversal_id']}: {item['outcome']}")
        for item in summary['errors']:
            click.echo(f"  {item['reversal_id']}: ERROR {item['error']}")

        cases = services.fanout.pending_cases()
        click.echo(f'Fan-out reconciliation cases: {len(cases)}')
        for case in cases:
            click.echo(
                f"  {case.transaction_type} {case.transaction_id} {case.component} "
                f"{case.status.value} {case.amount} {case.error or ''}"
            )
