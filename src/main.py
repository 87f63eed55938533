from __future__ import annotations

from fastapi import FastAPI

from src.api.invoice import router as invoice_router
from src.env_loader import load_env_file

load_env_file()

app = FastAPI(title="Invoice Entity Normalizer")
app.include_router(invoice_router)


@app.get("/health", tags=["meta"])
async def health() -> dict[str, str]:
    return {"status": "ok"}
