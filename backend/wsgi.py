# backend/wsgi.py
from saleflow import create_app

app = create_app()
