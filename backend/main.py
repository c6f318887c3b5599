import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.trips import router as trips_router
from config import config
from db import is_database_available
from services.directions_service import close_directions_service

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting trip API with config: {config.get_config_dict()}")
    yield
    close_directions_service()


app = FastAPI(title="School Bus Trip API", lifespan=lifespan)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(trips_router)


@app.get("/")
def read_root():
    return {"message": "Welcome to the School Bus Trip API"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "database": is_database_available(),
        "config": config.get_config_dict(),
    }
