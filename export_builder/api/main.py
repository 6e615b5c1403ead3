"""
FastAPI application entry-point.
"""
from __future__ import annotations

from fastapi import FastAPI

from export_builder.api.routers import exports

app = FastAPI(
    title="Export Builder",
    version="0.1.0",
    description="Configuration-driven spreadsheet exports",
)

app.include_router(exports.router, prefix="/exports", tags=["Exports"])


@app.get("/health")
def health():
    return {"status": "ok"}
