"""CLI entrypoint for running the FastAPI app with uvicorn."""

from __future__ import annotations

import os

import uvicorn


def main() -> None:
    """Run the ASGI server."""

    uvicorn.run(
        "taskflow.app:create_app",
        factory=True,
        host=os.getenv("TASKFLOW_HOST", "127.0.0.1"),
        port=int(os.getenv("TASKFLOW_PORT", "8000")),
        reload=False,
    )


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
