from __future__ import annotations

import os

import uvicorn

from doc_explainer.config import configure_logging


def main() -> None:
    configure_logging()
    port = int(os.environ.get("PORT", "8080"))
    uvicorn.run("doc_explainer.main:app", host="0.0.0.0", port=port, log_config=None)


if __name__ == "__main__":
    main()
