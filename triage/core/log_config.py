import logging
import sys

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # uvicorn --reload and the lifespan can both call this
    if any(getattr(h, "_triage_handler", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
    handler._triage_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # httpx logs every request the LLM clients make
    logging.getLogger("httpx").setLevel(logging.WARNING)
