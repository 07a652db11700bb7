import logging

import uvicorn

from roomdag.api import ServerConfig

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    config = ServerConfig.from_env()

    print("Starting Room DAG Observer API...")
    print(f"Docs available at: http://{config.host}:{config.port}/docs")

    uvicorn.run(
        "roomdag.api.server:app",
        host=config.host,
        port=config.port,
        reload=False
    )
