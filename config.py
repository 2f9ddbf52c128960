import os


class Config:
    # Environment
    FLASK_ENV = os.getenv('FLASK_ENV', 'development')

    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # OpenSign configuration (mock mode when the API URL is unset)
    OPENSIGN_API_URL = os.getenv('OPENSIGN_API_URL')
    OPENSIGN_APP_ID = os.getenv('OPENSIGN_APP_ID', 'opensign')
    OPENSIGN_SESSION_TOKEN = os.getenv('OPENSIGN_SESSION_TOKEN')
    OPENSIGN_TIMEOUT = float(os.getenv('OPENSIGN_TIMEOUT', 30))

    # Document list cache
    DOCUMENT_CACHE_TTL = int(os.getenv('DOCUMENT_CACHE_TTL', 300))
    DOCUMENT_LIST_LIMIT = int(os.getenv('DOCUMENT_LIST_LIMIT', 1000))
    DEFAULT_PAGE_SIZE = int(os.getenv('DEFAULT_PAGE_SIZE', 10))

    # Bulk send pacing
    BULK_SEND_MAX_WORKERS = int(os.getenv('BULK_SEND_MAX_WORKERS', 1))
    BULK_SEND_DELAY = float(os.getenv('BULK_SEND_DELAY', 0))
    DEFAULT_TIME_TO_COMPLETE_DAYS = int(os.getenv('DEFAULT_TIME_TO_COMPLETE_DAYS', 30))


class TestingConfig(Config):
    TESTING = True
    OPENSIGN_API_URL = None
    BULK_SEND_DELAY = 0
