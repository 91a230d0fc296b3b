# backend/wsgi.py
from salonerp import create_app

app = create_app()
