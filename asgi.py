"""
asgi.py -- Application assembly for SessionGate.

Settings are resolved here, once, when the server imports this module. A
missing JWT_SECRET / JWT_REFRESH_SECRET outside DEBUG mode raises ConfigError
and the server never starts.

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app

app = create_app()
