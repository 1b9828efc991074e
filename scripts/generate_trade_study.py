#!/usr/bin/env python3
"""
Generate a trade study from a topic and print the result as JSON.

Usage:
    python scripts/generate_trade_study.py
    python scripts/generate_trade_study.py --topic "Choose a message broker for telemetry" --depth standard
    python scripts/generate_trade_study.py --provider ollama --model llama3.1:8b --artifacts --folder-id <id>
    python scripts/generate_trade_study.py --no-llm --output study.json
"""

import argparse
import asyncio
import logging
import os
import sys
import time

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from agents.base import ResearchDepth  # noqa: E402
from app_lib.container import build_services  # noqa: E402
from app_lib.model_factory import LanguageModelService, create_model  # noqa: E402
from config.settings import LLMProvider, settings  # noqa: E402
from orchestrator.generator import GenerationInput  # noqa: E402

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "Select a vector database for AI memory"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate a scored trade study from a topic."
    )
    parser.add_argument("--topic", default=DEFAULT_TOPIC, help=f'Decision to study (default: "{DEFAULT_TOPIC}").')
    parser.add_argument(
        "--depth", default=ResearchDepth.QUICK.value,
        choices=[d.value for d in ResearchDepth],
        help="Research depth (default: quick).",
    )
    parser.add_argument(
        "--provider", default=None,
        help="LLM provider (anthropic, google, openai, ollama). Defaults to settings.",
    )
    parser.add_argument("--model", default=None, help="Model name override.")
    parser.add_argument("--no-llm", action="store_true", help="Skip the model and use deterministic fallbacks.")
    parser.add_argument("--artifacts", action="store_true", help="Export doc / sheet / slides to Google.")
    parser.add_argument("--folder-id", default=None, help="Destination Drive folder for artifacts.")
    parser.add_argument("--owner-id", default=None, help="Owner id for the created study.")
    parser.add_argument("--output", default=None, help="Write JSON here instead of stdout.")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> str:
    cfg = settings
    if args.provider:
        cfg = settings.model_copy(update={"llm_provider": LLMProvider(args.provider)})

    model = None
    if args.model and not args.no_llm:
        provider = cfg.resolve_provider()
        model = LanguageModelService(
            create_model(provider, model_name=args.model, cfg=cfg),
            name=f"{provider.value}:{args.model}",
        )

    services = build_services(cfg, model=model, use_model=not args.no_llm)
    params = GenerationInput(
        topic=args.topic,
        owner_id=args.owner_id or cfg.default_owner_id,
        folder_id=args.folder_id,
        depth=ResearchDepth(args.depth),
        generate_artifacts=args.artifacts,
    )
    result = await services.generator.generate(params)
    for step in result.steps:
        logger.info(f"{step.tool:<22} {step.status.value:<8} {step.message}")
    winner = result.winner.name if result.winner else "none"
    logger.info(f"Study {result.study_id}: winner {winner}")
    return result.model_dump_json(indent=2)


def main():
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    t0 = time.time()
    payload = asyncio.run(run(args))
    if args.output:
        with open(args.output, "w") as f:
            f.write(payload)
        logger.info(f"Wrote {args.output} in {time.time() - t0:.1f}s")
    else:
        print(payload)


if __name__ == "__main__":
    main()
