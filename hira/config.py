import os
import tempfile

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'a-very-secret-key-that-is-hard-to-guess'

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'hira.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Attachments: blobs live under UPLOAD_FOLDER/operational-images
    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER') or os.path.join(basedir, 'uploads')
    HIRA_MAX_FILES = int(os.environ.get('HIRA_MAX_FILES', 5))
    HIRA_MAX_TOTAL_SIZE = int(os.environ.get('HIRA_MAX_TOTAL_SIZE', 50 * 1024 * 1024))
    MAX_CONTENT_LENGTH = HIRA_MAX_TOTAL_SIZE + 1024 * 1024

    HIRA_DEFAULT_MATRIX = os.environ.get('HIRA_DEFAULT_MATRIX', 'ICAO')
    # Unknown matrix cells classify as the lowest band when on; raise when off.
    HIRA_ICAO_MISSING_FALLBACK = _env_flag('HIRA_ICAO_MISSING_FALLBACK', True)
    HIRA_AUTOSAVE_DELAY = float(os.environ.get('HIRA_AUTOSAVE_DELAY', 1.0))
    HIRA_PROJECT_LIST_RETRIES = int(os.environ.get('HIRA_PROJECT_LIST_RETRIES', 3))
    HIRA_RETRY_DELAY = float(os.environ.get('HIRA_RETRY_DELAY', 0.5))
    HIRA_TIMEZONE = os.environ.get('HIRA_TIMEZONE', 'UTC')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    UPLOAD_FOLDER = os.path.join(tempfile.gettempdir(), 'hira-test-uploads')
    HIRA_RETRY_DELAY = 0.0
    HIRA_AUTOSAVE_DELAY = 0.05
    LOG_LEVEL = 'DEBUG'
