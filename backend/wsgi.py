# backend/wsgi.py
from stockgate import create_app

app = create_app()
