# backend/wsgi.py
from hwpos import create_app

app = create_app()
