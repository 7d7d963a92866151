"""WSGI entry point: gunicorn wsgi:app"""

from sdlc_governance import create_app

app = create_app()
