"""WSGI entrypoint for development and production (project root).

Creates the Flask application from the `backend.tourbook` package. The
configuration class is chosen by APP_ENV (development, production, testing),
defaulting to development.

Usage examples:
  - Development: flask --app wsgi:app run --debug
  - Gunicorn:    gunicorn -c gunicorn.conf.py wsgi:app
"""
import logging
import os

from dotenv import load_dotenv

from backend.tourbook import create_app
from backend.tourbook.config import config

# Load environment variables from .env (if present)
load_dotenv()

logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = create_app(config[os.environ.get('APP_ENV', 'default')])

if __name__ == '__main__':
    app.run(debug=True)
