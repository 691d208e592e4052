"""
Entrypoint for uvicorn:

    uvicorn main:app --app-dir backend --reload
"""

from app.routes import create_app

app = create_app()
