"""Command line interface for ingesting and chatting over a tabular dataset."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Sequence, TextIO
from uuid import uuid4

from chromadb.api import ClientAPI

from tablerag.config import ConfigurationError, Settings, get_settings
from tablerag.dependencies import AppDependencies, build_dependencies
from tablerag.embeddings import EmbeddingBackendError, VectorStoreError
from tablerag.ingestion import ExtractionError, ExtractionPolicy, IngestionAbortedError, read_csv_records
from tablerag.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging
from tablerag.services import GenerationBackendError


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tablerag", description="Retrieval-augmented chat over a CSV dataset.")
    commands = parser.add_subparsers(dest="command", required=True)

    ingest = commands.add_parser("ingest", help="Embed dataset rows and store them in the vector store")
    ingest.add_argument("--file", type=Path, default=None, help="CSV file to ingest (defaults to data_dir/data_file)")
    ingest.add_argument("--batch-size", type=int, default=None, help="Documents per embed+store batch")
    ingest.add_argument("--skip-rows", type=int, default=None, help="Rows to skip when resuming a failed run")
    ingest.add_argument("--clear", action="store_true", help="Clear the collection before ingesting")
    ingest.add_argument("--field", type=str, default=None, help="Embed a single column instead of the full record")
    ingest.add_argument(
        "--full-record",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Build document text from all labelled trade fields",
    )

    search = commands.add_parser("search", help="Return the stored rows most similar to a query")
    search.add_argument("query", type=str)
    search.add_argument("-n", "--n-results", type=int, default=None)

    chat = commands.add_parser("chat", help="Answer a question grounded in the stored rows")
    chat.add_argument("message", type=str)
    chat.add_argument("--top-k", type=int, default=None)
    chat.add_argument("--max-tokens", type=int, default=None)
    chat.add_argument("--temperature", type=float, default=None)
    chat.add_argument("--no-stream", action="store_true", help="Wait for the full answer instead of streaming")

    commands.add_parser("stats", help="Show collection statistics")
    commands.add_parser("clear", help="Delete and recreate the collection")
    return parser.parse_args(argv)


def extraction_policy(args: argparse.Namespace, settings: Settings) -> ExtractionPolicy:
    field = args.field or settings.text_field
    if args.full_record is not None:
        use_full_record = args.full_record
    elif args.field:
        use_full_record = False
    else:
        use_full_record = settings.use_full_record
    return ExtractionPolicy(use_full_record=use_full_record, field=field)


async def run_ingest(args: argparse.Namespace, deps: AppDependencies, settings: Settings, out: TextIO) -> int:
    path = args.file or settings.data_file_path()
    records = read_csv_records(path)
    result = await deps.orchestrator.ingest(
        records,
        extraction_policy(args, settings),
        batch_size=args.batch_size or settings.batch_size,
        skip_rows=settings.skip_rows if args.skip_rows is None else args.skip_rows,
        clear_existing=args.clear,
    )
    print(json.dumps({"count": result.total_embedded, "message": result.message}), file=out)
    return 0


async def run_search(args: argparse.Namespace, deps: AppDependencies, out: TextIO) -> int:
    rows = await deps.retriever.similar(args.query, args.n_results)
    payload = {
        "count": len(rows),
        "results": [
            {"id": row.id, "document": row.text, "metadata": dict(row.metadata), "distance": row.distance}
            for row in rows
        ],
    }
    print(json.dumps(payload, indent=2, default=str), file=out)
    return 0


async def run_chat(args: argparse.Namespace, deps: AppDependencies, out: TextIO) -> int:
    chat_service = deps.chat_service
    if chat_service is None:
        raise ConfigurationError("chat requires a generation backend")
    params = {"top_k": args.top_k, "max_tokens": args.max_tokens, "temperature": args.temperature}
    if args.no_stream:
        answer = await chat_service.generate(args.message, **params)
        payload = {
            "response": answer.response,
            "contextsUsed": answer.contexts_used,
            "responseTime": round(answer.response_time_ms),
        }
        print(json.dumps(payload), file=out)
        return 0

    async with chat_service.stream(args.message, **params) as stream:
        async for event in stream.events():
            if event.kind == "token":
                out.write(event.data)
                out.flush()
            elif event.summary is not None:
                out.write("\n")
                print(json.dumps(event.summary.to_dict()), file=out)
    return 0


async def run_stats(deps: AppDependencies, out: TextIO) -> int:
    count = await deps.store.count()
    print(json.dumps({"count": count, "collectionName": deps.store.collection_name}), file=out)
    return 0


async def run_clear(deps: AppDependencies, out: TextIO) -> int:
    await deps.store.clear()
    print(json.dumps({"message": "Collection cleared successfully"}), file=out)
    return 0


async def dispatch(args: argparse.Namespace, deps: AppDependencies, settings: Settings, out: TextIO) -> int:
    try:
        if args.command == "ingest":
            return await run_ingest(args, deps, settings, out)
        if args.command == "search":
            return await run_search(args, deps, out)
        if args.command == "chat":
            return await run_chat(args, deps, out)
        if args.command == "stats":
            return await run_stats(deps, out)
        return await run_clear(deps, out)
    finally:
        await deps.aclose()


def main(
    argv: Sequence[str] | None = None,
    *,
    settings: Settings | None = None,
    chroma_client: ClientAPI | None = None,
    out: TextIO | None = None,
) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    settings = settings or get_settings()
    out = out or sys.stdout
    configure_logging(settings.log_level)
    bind_correlation_id(uuid4().hex)
    try:
        deps = build_dependencies(settings, chroma_client=chroma_client, chat=args.command == "chat")
        return asyncio.run(dispatch(args, deps, settings, out))
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except IngestionAbortedError as exc:
        print(str(exc), file=sys.stderr)
        print(f"Resume with --skip-rows {exc.resume_skip_rows}", file=sys.stderr)
        return 1
    except (
        ExtractionError,
        EmbeddingBackendError,
        VectorStoreError,
        GenerationBackendError,
        FileNotFoundError,
        ValueError,
    ) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        clear_correlation_id()


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
