"""
Configuration management for the BillFree loyalty app.
"""
import os
from dotenv import load_dotenv

load_dotenv()


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Shopify app credentials (session tokens are signed with the API secret)
    SHOPIFY_API_KEY = os.getenv('SHOPIFY_API_KEY', '')
    SHOPIFY_API_SECRET = os.getenv('SHOPIFY_API_SECRET', '')
    SHOPIFY_API_VERSION = os.getenv('SHOPIFY_API_VERSION', '2025-07')
    SHOPIFY_TIMEOUT = float(os.getenv('SHOPIFY_TIMEOUT', '10'))

    # BillFree endpoints. Per-endpoint URLs override BASE_URL + path.
    BILLFREE_API_BASE_URL = os.getenv('BILLFREE_API_BASE_URL', 'https://api.billfree.in/shopify')
    BILLFREE_API_POINTS_URL = os.getenv('BILLFREE_API_POINTS_URL')
    BILLFREE_API_SEND_OTP_URL = os.getenv('BILLFREE_API_SEND_OTP_URL')
    BILLFREE_API_VOTP_URL = os.getenv('BILLFREE_API_VOTP_URL')
    BILLFREE_API_REDEEM_URL = os.getenv('BILLFREE_API_REDEEM_URL')

    # Interactive (customer account) requests
    BILLFREE_TIMEOUT = float(os.getenv('BILLFREE_TIMEOUT', '10'))
    BILLFREE_READ_RETRIES = int(os.getenv('BILLFREE_READ_RETRIES', '1'))

    # Checkout evaluation runs inside Shopify's function deadline: short timeouts, no retries
    BILLFREE_CHECKOUT_TIMEOUT = float(os.getenv('BILLFREE_CHECKOUT_TIMEOUT', '3'))

    BILLFREE_DEFAULT_DIAL_CODE = os.getenv('BILLFREE_DEFAULT_DIAL_CODE', '91')

    # Single-use discount codes issued from the account page
    DISCOUNT_CODE_VALIDITY_DAYS = int(os.getenv('DISCOUNT_CODE_VALIDITY_DAYS', '7'))
    DISCOUNT_CODE_PREFIX = os.getenv('DISCOUNT_CODE_PREFIX', 'BILLFREE')


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///billfree_dev.db'  # SQLite fallback for local dev
    )


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False

    _db_url = os.getenv('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # SQLAlchemy requires postgresql:// not postgres://
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 5,
        'pool_recycle': 300,
        'pool_pre_ping': True,
    }

    _secret_key = os.getenv('SECRET_KEY', '')

    @classmethod
    def validate_secret_key(cls) -> str:
        """
        Validate SECRET_KEY in production environment.

        Raises:
            RuntimeError: If SECRET_KEY is missing, empty, or contains unsafe values
        """
        if not cls._secret_key:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable is not set!\n"
                "Production deployments MUST have a secure SECRET_KEY.\n"
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        insecure_patterns = ['dev', 'change', 'default', 'test', 'secret', 'password']
        lower_key = cls._secret_key.lower()
        for pattern in insecure_patterns:
            if pattern in lower_key:
                raise RuntimeError(
                    f"CRITICAL: SECRET_KEY contains '{pattern}' which suggests it's not secure!\n"
                    "Production deployments require a unique, random SECRET_KEY."
                )

        if len(cls._secret_key) < 32:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY is too short (minimum 32 characters required)!"
            )

        return cls._secret_key

    SECRET_KEY = _secret_key  # Validated at app startup


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    SHOPIFY_API_KEY = 'test-api-key'
    SHOPIFY_API_SECRET = 'test-api-secret'

    BILLFREE_API_BASE_URL = 'https://billfree.test/api'
    BILLFREE_API_POINTS_URL = None
    BILLFREE_API_SEND_OTP_URL = None
    BILLFREE_API_VOTP_URL = None
    BILLFREE_API_REDEEM_URL = None
    BILLFREE_READ_RETRIES = 0


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config_name: str = 'development') -> None:
    """
    Validate configuration before app startup.

    Args:
        config_name: The configuration environment name

    Raises:
        RuntimeError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_secret_key()
