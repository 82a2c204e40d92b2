"""
FastAPI application for prompt-tracker.

Exposes the evaluation engine: tracked-response evaluation, single
evaluator re-runs, human evaluations and prompt test runs.

Usage:
    uvicorn app.main:app --reload --port 8081
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.evaluation.routes import router as evaluation_router
from prompt_tracker_core.config import settings
from prompt_tracker_core.logging import setup_logging

# Initialize logging
setup_logging()

app = FastAPI(
    title="Prompt Tracker",
    description="Evaluator orchestration and scoring for tracked LLM responses",
    version="1.0.0",
)

# CORS configuration for the dashboard during development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite dev server
        "http://localhost:3000",  # Alternative frontend
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount the evaluation router under /evaluation prefix
app.include_router(evaluation_router, prefix="/evaluation", tags=["Evaluation"])


@app.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
        dict: Status and service information.
    """
    return {"status": "ok", "service": settings.SERVICE_NAME, "version": "1.0.0"}
