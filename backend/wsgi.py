# backend/wsgi.py
from tillpoint import create_app

app = create_app()
