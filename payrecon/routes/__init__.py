from payrecon.routes.billing import bp as billing_bp
from payrecon.routes.webhooks import bp as webhooks_bp


def register_routes(app):
    app.register_blueprint(billing_bp)
    app.register_blueprint(webhooks_bp)
