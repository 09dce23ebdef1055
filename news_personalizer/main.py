import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from news_personalizer.container import Container
from news_personalizer.errors import NewsPersonalizerError, ValidationError
from news_personalizer.utils.config import (
    CONFIG_TEMPLATES,
    create_config_from_template,
    create_data_directories,
    load_config,
    redact_secrets,
    validate_config,
)
from news_personalizer.vector_store.models import SearchFilters

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure standard logging format for the CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def read_articles(path: Path) -> list[dict[str, Any]]:
    """Read article records from a JSON array or a JSONL file."""
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix == ".jsonl":
            return [json.loads(line) for line in text.splitlines() if line.strip()]
        records = json.loads(text)
    except (OSError, ValueError) as e:
        raise ValidationError(f"Cannot read articles from {path}: {e}") from e
    if not isinstance(records, list):
        raise ValidationError(f"{path} must contain a JSON array of articles")
    return records


def build_container(config: dict[str, Any]) -> Container:
    container = Container()
    container.config.from_dict(config)
    return container


def load_index(container: Container) -> None:
    vector_index = container.vector_index()
    if vector_index.storage.exists():
        vector_index.load()
    else:
        logger.info("No persisted index yet, starting empty")


def cmd_ingest(args: argparse.Namespace, config: dict[str, Any]) -> int:
    create_data_directories(config)
    container = build_container(config)
    load_index(container)

    articles = read_articles(Path(args.articles))
    logger.info(f"Read {len(articles)} articles from {args.articles}")
    summary = container.pipeline().ingest_articles(articles)
    print(summary.model_dump_json(indent=2))
    return 0 if not summary.errors else 2


def cmd_search(args: argparse.Namespace, config: dict[str, Any]) -> int:
    container = build_container(config)
    load_index(container)
    pipeline = container.pipeline()

    filters = []
    if args.category:
        filters.append(SearchFilters.by_categories(*args.category))
    if args.source:
        filters.append(SearchFilters.by_sources(*args.source))
    if args.min_score is not None:
        filters.append(SearchFilters.by_min_score(args.min_score))
    combined = SearchFilters.combine(*filters) if filters else None

    if args.user:
        results = pipeline.personalized_search(args.user, args.query, combined, k=args.k)
    else:
        results = pipeline.search(args.query, combined, k=args.k).results
    print_results(results)
    return 0


def cmd_feed(args: argparse.Namespace, config: dict[str, Any]) -> int:
    container = build_container(config)
    load_index(container)

    feed = container.pipeline().search_by_preferences(
        args.user, k=args.k, one_per_article=True
    )
    print(f"Query: {feed.query_text}{' (fallback)' if feed.fallback_used else ''}")
    print_results(feed.results)
    return 0


def cmd_similar(args: argparse.Namespace, config: dict[str, Any]) -> int:
    container = build_container(config)
    load_index(container)

    print_results(container.pipeline().find_similar_articles(args.article_id, k=args.k))
    return 0


def print_results(results) -> None:
    for rank, result in enumerate(results, 1):
        metadata = result.chunk.metadata
        preview = result.chunk.content[:200].replace("\n", " ")
        print(
            f"{rank}. [{result.relevance_score:.3f}] {result.chunk.article_id} "
            f"({metadata.category}, {metadata.source}, {metadata.published_at:%Y-%m-%d})"
        )
        print(f"   {preview}")
    if not results:
        print("No results")


def cmd_config(args: argparse.Namespace, config: dict[str, Any]) -> int:
    if args.action == "validate":
        is_valid = validate_config(config)
        print(f"Configuration is {'valid' if is_valid else 'invalid'}")
        return 0 if is_valid else 1
    if args.action == "create-template":
        create_config_from_template(args.template, args.output)
        return 0
    print(json.dumps(redact_secrets(config), indent=2, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="news-personalizer",
        description="Ingest articles into a vector index and run personalized searches.",
    )
    parser.add_argument("--config", help="Path to a YAML config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Chunk, embed and index articles")
    ingest.add_argument("articles", help="JSON or JSONL file of article records")
    ingest.set_defaults(handler=cmd_ingest)

    search = subparsers.add_parser("search", help="Search the index")
    search.add_argument("query", help="Query text")
    search.add_argument("-k", type=int, default=10, help="Number of results")
    search.add_argument("--category", action="append", help="Only this category")
    search.add_argument("--source", action="append", help="Only this source")
    search.add_argument("--min-score", type=float, help="Minimum relevance score")
    search.add_argument("--user", help="Re-rank results for this user")
    search.set_defaults(handler=cmd_search)

    feed = subparsers.add_parser("feed", help="Ranked feed from a user's stored preferences")
    feed.add_argument("user", help="User id")
    feed.add_argument("-k", type=int, default=10, help="Number of results")
    feed.set_defaults(handler=cmd_feed)

    similar = subparsers.add_parser("similar", help="Articles similar to an indexed article")
    similar.add_argument("article_id", help="Indexed article id")
    similar.add_argument("-k", type=int, default=5, help="Number of results")
    similar.set_defaults(handler=cmd_similar)

    config = subparsers.add_parser("config", help="Inspect or create configuration")
    config.add_argument(
        "action", choices=["show", "validate", "create-template"], default="show", nargs="?"
    )
    config.add_argument("--template", choices=sorted(CONFIG_TEMPLATES), default="development")
    config.add_argument("--output", default="./config/config.yaml")
    config.set_defaults(handler=cmd_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    load_dotenv()

    try:
        logger.info("Loading configurations...")
        config = load_config(args.config)
        return args.handler(args, config)
    except NewsPersonalizerError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
