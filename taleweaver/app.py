import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from taleweaver.config import DEFAULT_TUNING, ModelConfig, Tuning, model_config_from_env
from taleweaver.errors import ConfigMissing
from taleweaver.llm import ChatLLM, HttpLLM
from taleweaver.routes import Services, router
from taleweaver.storage import SaveStore

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def _default_llm(config: ModelConfig) -> ChatLLM | None:
    try:
        return HttpLLM(config)
    except ConfigMissing as e:
        logger.warning("Model not configured (%s); story endpoints will return 400", e)
        return None


def create_app(
    data_dir: Path | None = None,
    llm: ChatLLM | None = None,
    model_config: ModelConfig | None = None,
    tuning: Tuning = DEFAULT_TUNING,
) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    config = model_config or model_config_from_env()

    app = FastAPI(title="Taleweaver")
    app.state.services = Services(
        saves=SaveStore(resolved),
        model_config=config,
        llm=llm if llm is not None else _default_llm(config),
        tuning=tuning,
    )
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR and TALEWEAVER_* env vars)
app = create_app()
