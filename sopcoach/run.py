"""
sopcoach command line.

Usage:
    python -m sopcoach.run ingest --path docs/sops [--module "Lockout/Tagout"]
    python -m sopcoach.run ask "How do I lock out the press?" [--module M] [--docs DIR]
    python -m sopcoach.run quiz [--module M] [--docs DIR]
    python -m sopcoach.run health

Without CHROMA_URL the index lives in process memory, so ``ask`` and ``quiz``
ingest ``--docs`` (default: the configured documents directory) first.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .agents.streaming import error_frame, stream_sse
from .app import AppServices, build_services
from .config import config, token_tracker
from .errors import SopCoachError
from .utils.document_loader import ingest_path
from .utils.health import get_health_snapshot
from .utils.log import setup_logging

logger = logging.getLogger("sopcoach.run")


async def _preload(services: AppServices, docs: Optional[str]) -> None:
    path = Path(docs) if docs else config.paths.documents_dir
    if not path.exists():
        logger.info("No documents at %s; answering without retrieved context", path)
        return
    try:
        await ingest_path(path, services.vector_store)
    except ValueError as e:
        logger.warning("Skipping preload: %s", e)


async def cmd_ingest(args: argparse.Namespace) -> int:
    services = build_services(config)
    count = await ingest_path(args.path, services.vector_store, module=args.module)
    print(f"Ingested {count} chunks from {args.path}.")
    return 0


async def cmd_ask(args: argparse.Namespace) -> int:
    services = build_services(config)
    await _preload(services, args.docs)

    user = await services.store.create_user("cli@localhost", language=args.language)
    try:
        session = await services.chat.start_turn(user, args.question, module=args.module)
    except SopCoachError as e:
        sys.stdout.write(error_frame(e))
        return 1

    async for frame in stream_sse(session, services.streams):
        sys.stdout.write(frame)
        sys.stdout.flush()
    return 0


async def _prompt(text: str) -> str:
    return await asyncio.to_thread(input, text)


async def cmd_quiz(args: argparse.Namespace) -> int:
    services = build_services(config)
    await _preload(services, args.docs)

    user = await services.store.create_user("cli@localhost", language=args.language)
    started = await services.quiz.start(user, module=args.module)
    print(f"Quiz: {started.module} ({len(started.questions)} questions)\n")

    result = None
    for question in started.questions:
        print(f"Q{question.position + 1}. {question.prompt}")
        for option in question.options or []:
            print(f"   {option}")
        answer = (await _prompt("> ")).strip()
        while not answer:
            answer = (await _prompt("> ")).strip()

        result = await services.quiz.answer(user, started.attempt_id, question.id, answer)
        print(f"{result.feedback}\n")

    if result is not None:
        print(f"Score: {result.score_percent}% ({result.answered_count}/{result.total_questions})")
        print(f"Skill level: {user.skill_level.value}")

    analytics = await services.store.get_analytics(user.id)
    print(json.dumps(analytics.to_dict(), indent=2))
    return 0


async def cmd_health(args: argparse.Namespace) -> int:
    snapshot = await get_health_snapshot(config)
    print(json.dumps(snapshot.to_dict(), indent=2))
    return 0 if snapshot.status == "ok" else 1


COMMANDS = {
    "ingest": cmd_ingest,
    "ask": cmd_ask,
    "quiz": cmd_quiz,
    "health": cmd_health,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sopcoach",
        description="SOP training assistant for manufacturing operators",
    )
    parser.add_argument("--log-level", default=config.logging.log_level)
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Index SOP documents")
    ingest.add_argument("--path", required=True, help="Folder or file (.md, .markdown, .txt, .pdf)")
    ingest.add_argument("--module", help="Module for every chunk (default: parent folder name)")

    ask = subparsers.add_parser("ask", help="Ask a question and print the SSE stream")
    ask.add_argument("question")
    ask.add_argument("--module")
    ask.add_argument("--docs", help="Documents to index before answering")
    ask.add_argument("--language", default="en")

    quiz = subparsers.add_parser("quiz", help="Take an interactive quiz")
    quiz.add_argument("--module")
    quiz.add_argument("--docs", help="Documents to index before generating")
    quiz.add_argument("--language", default="en")

    subparsers.add_parser("health", help="Check external dependencies")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    for error in config.validate():
        logger.error("Config: %s", error)

    try:
        code = asyncio.run(COMMANDS[args.command](args))
    except (FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        return 130

    if token_tracker.total_calls:
        logger.info("Token usage: %s", token_tracker.summary())
    return code


if __name__ == "__main__":
    sys.exit(main())
