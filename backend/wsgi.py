# backend/wsgi.py
from facturapro_service import create_app

app = create_app()
