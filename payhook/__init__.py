"""Flask application factory."""
from flask import Flask, request, jsonify
from payhook.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize Sentry for error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Flask-Mail for payment receipts
    from payhook.services.email_service import init_mail
    init_mail(app)

    # Prometheus metrics instrumentation
    from payhook.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix so request.url matches the URL Square signed
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=1,      # Trust X-Forwarded-For with 1 proxy
            x_proto=1,    # Trust X-Forwarded-Proto
            x_host=1,     # Trust X-Forwarded-Host
            x_port=1,     # Trust X-Forwarded-Port
            x_prefix=0
        )

    # Initialize database
    init_db(app)

    # Error Handlers
    from payhook.exceptions import PayhookError

    @app.errorhandler(PayhookError)
    def handle_payhook_error(error):
        """Handle custom application exceptions raised outside the webhook blueprint."""
        app.logger.error(f"PayhookError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception on {request.path}: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from payhook.blueprints.metrics import metrics_bp
    from payhook.blueprints.webhooks import webhooks_bp

    app.register_blueprint(metrics_bp)
    app.register_blueprint(webhooks_bp)

    # Register CLI commands
    from payhook.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"MAIL_SERVER={app.config.get('MAIL_SERVER')}")
    app.logger.info(f"SQUARE_ENVIRONMENT={app.config.get('SQUARE_ENVIRONMENT')}")

    return app
