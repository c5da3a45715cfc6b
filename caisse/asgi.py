"""
ASGI entrypoint: expose `app` pour les process managers / déploiements (caisse.asgi:app).
"""
from caisse.app_setup.factory import create_app

app = create_app()

if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run(
        "caisse.asgi:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
