import logging
import sys
import os

from dotenv import load_dotenv

# Add the project directory to the sys.path
project_home = os.path.dirname(os.path.abspath(__file__))
if project_home not in sys.path:
    sys.path.insert(0, project_home)

# Load environment variables from .env before the config class is imported
dotenv_path = os.path.join(project_home, '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)

os.environ.setdefault('FLASK_ENV', 'production')
logging.basicConfig(level=os.getenv('LOG_LEVEL', 'INFO').upper())

from app import create_app

application = create_app()
