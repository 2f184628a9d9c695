import os

import uvicorn


def start_server(app, port: int | None = None):
    host = os.getenv("HOST", "127.0.0.1")
    port = port or int(os.getenv("PORT", "3000"))
    print(f"VetDDx API listening on http://{host}:{port}/api/generate-differentials", flush=True)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="warning",
    )
