from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.api.errors import status_for
from backend.app.api.v1.router import router as v1_router
from backend.app.core.config import settings
from backend.app.core.logging import setup_logging
from backend.services.errors import LedgerError


def create_app() -> FastAPI:
    setup_logging(settings.log_level)

    app = FastAPI(title="Stock Ledger", version="0.1.0")
    app.include_router(v1_router, prefix="/v1")

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        # erreurs levées (id inconnu, recette absente...) : même payload que les refus métier
        return JSONResponse(status_code=status_for(exc), content={"detail": {"errors": [exc.to_dict()]}})

    return app


app = create_app()
