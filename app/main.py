import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from app.core.config import settings
from app.core.database import engine, AsyncSessionLocal
from app.api.router import api_router
from app.ai_feature.llm import build_http_client
from app.ai_feature.service import build_capabilities

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# Build the external collaborators once, close the clients and the engine on shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    http_client = build_http_client(settings)
    app.state.capabilities = build_capabilities(
        settings, AsyncSessionLocal, http_client=http_client
    )
    embedding = "on" if app.state.capabilities.embedder else "off"
    logger.info(f"Capabilities ready (embedding: {embedding})")

    yield
    if http_client is not None:
        await http_client.aclose()
    await engine.dispose()


app = FastAPI(title="Fire Management Context API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Welcome to the Fire Management Context API"}
