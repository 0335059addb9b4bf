"""FastAPI application - serves the live detection API."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tempofuse.api.websocket import router as ws_router

app = FastAPI(title="Tempofuse", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ws_router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok"}


def run():
    import uvicorn
    from tempofuse.config import settings
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "tempofuse.main:app",
        host=settings.host,
        port=settings.port,
    )
