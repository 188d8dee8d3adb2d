import uvicorn

from .config import load_config
from .proxy_app import app


def main() -> None:
    cfg = load_config()
    host, port = cfg.listen_address()
    uvicorn.run(app, host=host, port=port, log_level=cfg.log_level.lower())
