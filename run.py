import logging

import uvicorn

from asr_optimizer.config import load_config, resolve_server_settings
from asr_optimizer.main import app

if __name__ == "__main__":
    settings = resolve_server_settings(load_config())
    logging.basicConfig(
        level=settings["log_level"].upper(),
        format="[%(asctime)s] %(levelname)s %(name)s - %(message)s",
    )
    # HOST=127.0.0.1 keeps the service on loopback; default listens on all interfaces.
    uvicorn.run(app, host=settings["host"], port=settings["port"], log_level=settings["log_level"])
