# backend/wsgi.py
from mardecores import create_app

app = create_app()
