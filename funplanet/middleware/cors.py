from fastapi.middleware.cors import CORSMiddleware
from funplanet.config.settings import ALLOWED_ORIGINS

def setup_cors(app):
    # Browsers reject credentialed requests to a wildcard origin.
    allow_all = ALLOWED_ORIGINS == ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=not allow_all,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )
