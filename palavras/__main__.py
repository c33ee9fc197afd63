from __future__ import annotations

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "palavras.app:app",
        host=os.getenv("PALAVRAS_HOST", "127.0.0.1"),
        port=int(os.getenv("PALAVRAS_PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
