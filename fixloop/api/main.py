import os
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fixloop import __version__
from fixloop.api.routers import fix_runs, cache
from fixloop.services.log_service import logger

app = FastAPI(title="FixLoop API", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(fix_runs, prefix="/api/v1/fix-runs", tags=["Fix Runs"])
app.include_router(cache,    prefix="/api/v1/cache",    tags=["Caches"])


@app.get("/")
def root():
    return {
        "message": "Welcome to FixLoop",
        "services": {
            "Fix Runs": "/api/v1/fix-runs",
            "Caches": "/api/v1/cache",
        },
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "fixloop", "version": __version__}


def run() -> None:
    port = int(os.getenv("FIXLOOP_PORT", 8010))
    logger.info(f"Starting FixLoop API on port {port}")
    uvicorn.run(
        "fixloop.api.main:app",
        host=os.getenv("FIXLOOP_HOST", "0.0.0.0"),
        port=port,
        log_level="info"
    )


if __name__ == "__main__":
    run()
