"""Run the FastAPI app for the agent round service."""

from __future__ import annotations

import logging
import os

import uvicorn
from fastapi import FastAPI

from src.routers import agent_router


app = FastAPI(title="Agent Rounds", version="0.1.0")
app.include_router(agent_router)


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
