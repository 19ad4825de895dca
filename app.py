import os

from flask import Flask, redirect, render_template, url_for
from flask_wtf import CSRFProtect

from config import Config
from controllers import create_blueprint
from data_models import db
from stores import StoreError, create_catalog

csrf = CSRFProtect()


def create_app(config_object=None) -> Flask:
    """
    Application factory. ``config_object`` defaults to ``config.Config``.
    """
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)
    csrf.init_app(app)

    backend = app.config["CATALOG_STORE"]
    if backend == "sql":
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
            os.makedirs(app.config["DATA_DIR"], exist_ok=True)
        with app.app_context():
            db.create_all()
    app.extensions["catalog"] = create_catalog(backend)
    app.logger.info("Catalog using %s store", backend)

    register_error_handlers(app)
    app.register_blueprint(create_blueprint())

    @app.route("/")
    def home():
        return redirect(url_for("catalog.index"))

    return app


# -----------------------------
# Error handlers (one template)
# -----------------------------
def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(404)
    def handle_404(e):
        return render_template("error.html", code=404, message=e.description or "Page not found."), 404

    @app.errorhandler(400)
    def handle_400(e):
        return render_template("error.html", code=400, message=e.description), 400

    @app.errorhandler(StoreError)
    def handle_store_error(e):
        app.logger.error("Store failure: %s", e)
        return render_template("error.html", code=500, message=str(e)), 500

    @app.errorhandler(500)
    def handle_500(e):
        return render_template("error.html", code=500, message="Internal server error."), 500


if __name__ == "__main__":
    # You can change the port if 5000 is taken
    create_app().run(host="0.0.0.0", port=5000, debug=True)
