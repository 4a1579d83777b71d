#!/usr/bin/env python3
import argparse
import asyncio
import sys
from pathlib import Path

from companion_memory.conversation_tagger import ConversationTagger
from companion_memory.db import Database
from companion_memory.migrate import run_migrations
from companion_memory.openrouter_client import get_llm_client
from companion_memory.persistence import PostgresTagStore


async def run(args: argparse.Namespace) -> int:
    if args.transcript == "-":
        transcript = sys.stdin.read()
    else:
        transcript = Path(args.transcript).read_text()
    if not transcript.strip():
        print("tag: empty transcript, nothing to do")
        return 1

    save = args.save and not args.dry_run
    if save and not args.user_id:
        print("tag: --user-id is required with --save")
        return 2

    db = Database()
    gateway = PostgresTagStore(db) if save else None
    tagger = ConversationTagger(get_llm_client(), gateway=gateway)

    try:
        result = await tagger.auto_tag_conversation(args.session_id, transcript)
        print(
            f"tag: session={args.session_id} tags={','.join(result.tags) or '-'} "
            f"emotion={result.primaryEmotion} intensity={result.intensity}"
        )
        if save:
            await run_migrations(db)
            record = await tagger.save_conversation_tags(
                args.user_id,
                args.session_id,
                result.tags,
                result.primaryEmotion,
                result.intensity
            )
            print(f"tag: saved id={record.id}")
    finally:
        await db.close()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Tag a conversation transcript (topics, emotion, intensity).")
    parser.add_argument("transcript", help="Path to a transcript file, or - for stdin")
    parser.add_argument("--session-id", default="adhoc")
    parser.add_argument("--user-id")
    parser.add_argument("--save", action="store_true", help="Persist the result to conversation_tags")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
