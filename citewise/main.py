from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from citewise.api.routes import chat
from citewise.config import settings
from citewise.models.schemas import HealthResponse
from citewise.services.embeddings import EmbeddingModelCache
from citewise.services.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    app.state.embedding_cache = EmbeddingModelCache(settings)
    logger.info(
        f"Citewise started: embedding_backend={settings.embedding_backend} "
        f"extraction={settings.extraction_method}"
    )
    yield
    # Shutdown
    await app.state.embedding_cache.aclose()


app = FastAPI(
    title="Citewise",
    description="Cited answers from live web search",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(chat.router)


@app.get("/api/health", response_model=HealthResponse)
async def health():
    return {"status": "ok", "service": "citewise"}
