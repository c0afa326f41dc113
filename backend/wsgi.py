# backend/wsgi.py
from gasdepot import create_app

app = create_app()
