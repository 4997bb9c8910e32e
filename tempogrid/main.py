"""FastAPI application - serves the analysis API.

Optional convenience server; the calibration engine itself is used in-process.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tempogrid.api.analyze import router as analyze_router

app = FastAPI(title="Tempogrid", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analyze_router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok"}


def run():
    import uvicorn
    from tempogrid.config import settings
    uvicorn.run(
        "tempogrid.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
    )
