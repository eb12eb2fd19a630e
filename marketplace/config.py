import os
from datetime import timedelta


class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False
    ENV = os.getenv("FLASK_ENV", "development")
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-change-me")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(days=1)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Pricing
    PLATFORM_FEE = os.getenv("PLATFORM_FEE", "0")
    FREE_SHIPPING_THRESHOLD = os.getenv("FREE_SHIPPING_THRESHOLD", "500")
    SHIPPING_FEE = os.getenv("SHIPPING_FEE", "50")
    OFFER_POLICY = os.getenv("OFFER_POLICY", "pre_discount")   # "pre_discount" | "running"

    # Commit
    CHECKOUT_COMMIT_ATTEMPTS = int(os.getenv("CHECKOUT_COMMIT_ATTEMPTS", "3"))
    CHECKOUT_ATTEMPT_LEASE_SECONDS = int(os.getenv("CHECKOUT_ATTEMPT_LEASE_SECONDS", "60"))

    @staticmethod
    def init_app(app):
        if not os.getenv("DATABASE_URL"):
            os.makedirs(app.instance_path, exist_ok=True)
            app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{os.path.join(app.instance_path, 'app.db')}"
        else:
            app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL")


class TestingConfig(Config):
    TESTING = True
    JWT_SECRET_KEY = "test-secret-with-enough-length-for-hs256"
    PLATFORM_FEE = "0"
    LOG_LEVEL = "DEBUG"
    CHECKOUT_COMMIT_ATTEMPTS = 10
    # sqlite file shared by worker threads in the race tests
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {"check_same_thread": False, "timeout": 30},
    }

    @staticmethod
    def init_app(app):
        # conftest sets SQLALCHEMY_DATABASE_URI per test
        pass
