#!/usr/bin/env python3
"""
Pipeline Worker

Wires cache, cost stack, AI gateway and content services, then runs a
worker over the job lanes.

Usage:
    # Set environment variables first:
    export OPENAI_API_KEY=your_key
    export REDIS_URL=redis://localhost:6379/0   # optional

    # Generate one article and drain the queue:
    python scripts/run_worker.py --keyword "visa nomade digital" --language fr --country TH \
        --translate --image --until-empty

    # Serve selected lanes only:
    python scripts/run_worker.py --lanes content-generation translation
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

CONTENT_JOBS = {
    "article": "GenerateArticleJob",
    "landing": "GenerateLandingJob",
    "comparative": "GenerateComparativeJob",
}


async def run_worker(args) -> int:
    """Build the pipeline and process jobs."""
    load_dotenv()

    from src.ai.errors import ConfigurationError
    from src.ai.gateway import build_gateway
    from src.cache import ContentCache, close_cache_backend, get_cache_backend
    from src.content import InMemoryContentRepository, build_services
    from src.costs import build_cost_stack
    from src.database import init_db
    from src import jobs
    from src.persistence import JobTracker
    from src.utils.config import get_settings

    settings = get_settings()
    init_db()
    cache = await get_cache_backend()
    costs = build_cost_stack(settings, cache)

    try:
        gateway = build_gateway(settings, cache, costs.ledger, costs.governor)
    except ConfigurationError as e:
        logger.error(f"Cannot start worker: {e}")
        await close_cache_backend()
        return 1

    repository = InMemoryContentRepository()
    orchestrator = jobs.JobOrchestrator(jobs.InMemoryJobQueue(), JobTracker(settings.JOBS_STORAGE_PATH), cache)
    worker = jobs.Worker(
        orchestrator,
        repository,
        build_services(settings, gateway, repository),
        config=jobs.PipelineConfig.from_settings(settings),
        gateway=gateway,
        content_cache=ContentCache(cache),
        poll_interval=args.poll_interval,
    )

    if args.keyword:
        job_class = getattr(jobs, CONTENT_JOBS[args.content_type])
        payload = {"keyword": args.keyword, "language": args.language, "country": args.country}
        if args.translate:
            payload["auto_translate"] = True
        if args.image:
            payload["generate_image"] = True
        await orchestrator.dispatch(job_class(**payload))

    lanes = args.lanes or jobs.QUEUE_PRIORITY
    try:
        processed = await worker.run(lanes, max_jobs=args.max_jobs, stop_when_empty=args.until_empty)
    finally:
        await gateway.close()
        await close_cache_backend()

    stats = orchestrator.tracker.get_job_stats()
    print(f"\nProcessed {processed} job(s): {stats['by_status']}")
    report = await costs.reporter.status()
    print(f"Spent today: ${report['daily']['spent']:.4f} / ${report['daily']['budget']:.2f}")
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run the content pipeline worker")
    parser.add_argument("--keyword", help="Dispatch one generation job for this keyword")
    parser.add_argument(
        "--content-type",
        default="article",
        choices=sorted(CONTENT_JOBS),
        help="Content type for --keyword (default: article)"
    )
    parser.add_argument("--language", default="fr", help="Content language (default: fr)")
    parser.add_argument("--country", default=None, help="Target country code")
    parser.add_argument("--translate", action="store_true", help="Translate into all active languages")
    parser.add_argument("--image", action="store_true", help="Generate a featured image")
    parser.add_argument("--lanes", nargs="+", default=None, help="Queue lanes to serve, in priority order")
    parser.add_argument("--max-jobs", type=int, default=None, help="Stop after this many jobs")
    parser.add_argument("--until-empty", action="store_true", help="Stop when no job is due")
    parser.add_argument("--poll-interval", type=float, default=1.0, help="Seconds between empty polls")

    args = parser.parse_args()
    sys.exit(asyncio.run(run_worker(args)))


if __name__ == "__main__":
    main()
