import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from site_memory import SiteMemoryConfig, __version__
from site_memory.api import router as site_memory_router, get_site_memory

# Loads backend/.env before anything reads the environment
config = SiteMemoryConfig.from_env()

logging.basicConfig(
    level=config.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    memory = get_site_memory()
    await memory.start()
    logger.info(f"Site memory ready (data dir: {memory.config.data_dir})")
    yield
    await memory.close()


app = FastAPI(title="Site Memory Service", version=__version__, lifespan=lifespan)

# CORS Configuration
# In production, set CORS_ORIGINS environment variable to comma-separated allowed origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept"],
)

app.include_router(site_memory_router)


# ============ Health Check ============
@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": __version__,
        "platform": sys.platform
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
