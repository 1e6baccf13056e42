# backend/wsgi.py
from creditpos import create_app

app = create_app()
