import os

from dotenv import load_dotenv

load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


class Config:
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-secret-key")

    DATA_DIR = os.getenv("CATALOG_DATA_DIR", os.path.join(basedir, "data"))
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL", f"sqlite:///{os.path.join(DATA_DIR, 'library.sqlite')}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "sql" or "memory"
    CATALOG_STORE = os.getenv("CATALOG_STORE", "sql")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    WTF_CSRF_ENABLED = os.getenv("WTF_CSRF_ENABLED", "True").lower() in ("true", "1", "yes")


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "testing"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    CATALOG_STORE = "memory"
    LOG_LEVEL = "DEBUG"
    WTF_CSRF_ENABLED = False


class SqlTestingConfig(TestingConfig):
    CATALOG_STORE = "sql"
