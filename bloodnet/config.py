import os


def _env_bool(name, default):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'bloodnet-dev-key')

    # 'memory' keeps everything in process, 'dynamodb' talks to AWS
    STORE_BACKEND = os.environ.get('STORE_BACKEND', 'memory')
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')
    TABLE_PREFIX = os.environ.get('TABLE_PREFIX', 'BloodNet')

    NOTIFICATION_LIMIT = int(os.environ.get('NOTIFICATION_LIMIT', '50'))
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', 'admin@bloodnet.com')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    MAIL_HOST = os.environ.get('MAIL_HOST')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', '587'))
    MAIL_USER = os.environ.get('MAIL_USER')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_USE_TLS = _env_bool('MAIL_USE_TLS', '1')
    MAIL_SENDER = os.environ.get('MAIL_SENDER', 'no-reply@bloodnet.com')


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'testing'
    STORE_BACKEND = 'memory'
    MAIL_HOST = None
    NOTIFICATION_LIMIT = 20
