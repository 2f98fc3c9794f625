"""FastAPI application entry point."""

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.api import router as api_router
from app.core.errors import CanvasError, canvas_error_handler

app = FastAPI(
    title="CrossMind Canvas Engine",
    description="Framework canvas health analysis, zone affinities and suggestions",
    version="0.1.0",
)

app.add_exception_handler(CanvasError, canvas_error_handler)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
