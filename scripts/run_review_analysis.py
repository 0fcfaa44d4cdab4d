import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.config import settings
from src.database import close_mongo_connection, connect_to_mongo
from src.pipeline.llm_analyzer import ReviewLLMAnalyzer
from src.scraper.google_maps import GoogleMapsScraper
from src.services.orchestrator import SessionOrchestrator
from src.services.result_store import SessionResultStore


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Collect and analyze the reviews of one Google Maps place.")
    parser.add_argument("url", help="Google Maps place URL.")
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run the browser headless regardless of SCRAPER_HEADLESS.",
    )
    parser.add_argument(
        "--fallback-analysis",
        action="store_true",
        help="Skip Gemini and use the rule-based classifier.",
    )
    parser.add_argument(
        "--compact",
        action="store_true",
        help="Print compact JSON output (single line).",
    )
    return parser.parse_args()


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


async def _run() -> int:
    args = _parse_args()
    headless = True if args.headless else settings.scraper_headless

    if settings.persist_results:
        await connect_to_mongo()
    try:
        orchestrator = SessionOrchestrator(
            source_factory=lambda: GoogleMapsScraper.from_settings(headless=headless),
            analyzer=ReviewLLMAnalyzer(use_fallback=True if args.fallback_analysis else None),
            result_store=SessionResultStore() if settings.persist_results else None,
        )
        session_id = await orchestrator.start_analysis(args.url)
        session = await orchestrator.wait(session_id)
        payload = orchestrator.get_status(session_id)
    finally:
        if settings.persist_results:
            await close_mongo_connection()

    if args.compact:
        print(json.dumps(payload, ensure_ascii=False, default=_json_default))
    else:
        print(json.dumps(payload, ensure_ascii=False, indent=2, default=_json_default))
    return 0 if session.status == "complete" else 1


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    sys.exit(asyncio.run(_run()))
