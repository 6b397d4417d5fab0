"""
Prop Tracker Backend - Main Entry Point

Serves the prop lifecycle API; the server's lifespan owns the background scheduler.

Usage:
    python main.py           # Start server + scheduler
    python main.py --once    # Run every job once and exit
    python main.py --sweep   # Reconcile pending props until the queue drains, then exit
"""
import sys
import logging
import uvicorn

from config import API_HOST, API_PORT

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main():
    if "--once" in sys.argv:
        from scheduler import run_once
        run_once()
        return

    if "--sweep" in sys.argv:
        from result_resolver import default_sweep_context
        from scheduler import run_reconciliation
        totals = run_reconciliation(default_sweep_context())
        logger.info(f"[Main] Sweep finished: {totals}")
        return

    logger.info(f"Starting Prop Tracker API on {API_HOST}:{API_PORT}...")
    try:
        from api.server import app
        uvicorn.run(app, host=API_HOST, port=API_PORT)
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
