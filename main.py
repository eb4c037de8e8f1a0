import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from rich.logging import RichHandler

from api.router import api_router
import core.globals
from core.media_processor import ensure_ffmpeg
from config import FASTAPI_PORT

# Basic logging setup
FORMAT = "%(message)s"
logging.basicConfig(
    level="INFO", format=FORMAT, datefmt="[%X]", handlers=[RichHandler()]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_ffmpeg()
    core.globals.init_globals()
    logger.info(f"Listening to port {FASTAPI_PORT}...")
    yield


app = FastAPI(title="ChunkRelay API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_credentials=True,
)

app.include_router(api_router)


def run_server():
    config = uvicorn.Config(app, host="0.0.0.0", port=FASTAPI_PORT, log_level="warning")
    uvicorn.Server(config).run()


if __name__ == "__main__":
    run_server()
