import logging
import os

from flask import Flask

from .config import Config
from .models import db
from .services import HiraDataService
from .storage import AttachmentStore
from .wizard import WizardRegistry


def configure_logging(level):
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    logging.getLogger('hira').setLevel(level)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_logging(app.config.get('LOG_LEVEL', 'INFO'))
    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    db.init_app(app)

    service = HiraDataService.from_config(app.config)
    app.extensions['hira'] = {
        'service': service,
        'storage': AttachmentStore.from_config(app.config),
        'wizards': WizardRegistry(
            service,
            matrix_type=app.config.get('HIRA_DEFAULT_MATRIX', 'ICAO'),
            autosave_delay=app.config.get('HIRA_AUTOSAVE_DELAY', 1.0),
            context=app.app_context,
        ),
    }

    from .routes import main_bp
    app.register_blueprint(main_bp)

    return app
