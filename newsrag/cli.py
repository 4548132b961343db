"""
Command-Line Interface for the News RAG Chat Backend

Provides CLI commands for:
- News ingestion from the configured RSS feeds
- RAG-based question answering (batch or streamed)
- Semantic search
- System statistics and health checks
- Clearing the index
- An interactive chat session
"""

import sys
import asyncio
import argparse
import logging
from typing import Optional, List

from .config import get_config
from .main_pipeline import NewsChatSystem
from .query.handler import StreamEvent


def setup_logging(verbose: bool = False, level_name: str = "INFO"):
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def _build_system() -> NewsChatSystem:
    return NewsChatSystem(config=get_config())


def _print_sources(sources: List[dict]):
    print("Sources:")
    for i, source in enumerate(sources, 1):
        metadata = source.get('metadata', {})
        print(f"  [{i}] {metadata.get('title', 'Untitled')} ({source.get('score', 0.0):.3f})")
        if metadata.get('url'):
            print(f"      {metadata['url']}")
    print()


def cmd_ingest(args):
    """Handle the ingest command."""
    system = _build_system()

    print("Clearing index and ingesting news..." if args.clear else "Ingesting news...")
    report = asyncio.run(system.ingest(clear=args.clear, show_progress=not args.no_progress))

    print(f"\n{'='*60}")
    print(f"Ingestion Summary:")
    print(f"  Articles fetched: {report['articles_fetched']}")
    print(f"  Chunks stored: {report['chunks_stored']}")
    print(f"  Failed articles: {report['failed_articles']}")
    print(f"  Documents in index: {report['documents_count']}")
    print(f"  Processing time: {report['processing_time']:.2f}s")
    print(f"{'='*60}")

    if report['articles_fetched'] and report['failed_articles'] == report['articles_fetched']:
        print("✗ Every article failed to ingest")
        sys.exit(1)


def _print_event(show_sources: bool):
    def emit(event: StreamEvent):
        if event.type == 'chunk':
            print(event.data['text'], end='', flush=True)
        elif event.type == 'sources' and show_sources:
            _print_sources(event.data['sources'])
            print("Answer:")
        elif event.type == 'start' and not show_sources:
            print("Answer:")
        elif event.type == 'complete':
            print("\n")
            print(f"Session ID: {event.data['session_id']}")
        elif event.type == 'error':
            print(f"\n✗ {event.data['error']}")
    return emit


def cmd_ask(args):
    """Handle the ask command."""
    system = _build_system()

    print(f"Question: {args.question}")
    print()

    if args.stream:
        errors = []
        printer = _print_event(not args.no_sources)

        def emit(event: StreamEvent):
            if event.type == 'error':
                errors.append(event)
            printer(event)

        asyncio.run(system.ask_streaming(args.question, args.session, emit))
        if errors:
            sys.exit(1)
        return

    result = asyncio.run(system.ask(args.question, session_id=args.session))

    if not result['success']:
        print(f"✗ {result['error']}")
        sys.exit(1)

    print("Answer:")
    print(f"{result['answer']}")
    print()

    if not args.no_sources and result.get('sources'):
        _print_sources(result['sources'])

    print(f"Session ID: {result['session_id']}")
    print("(Use this session ID for follow-up questions)")


def cmd_search(args):
    """Handle the search command."""
    system = _build_system()

    print(f"Searching for: {args.query}")
    print()

    results = asyncio.run(system.search(args.query, top_k=args.top_k))

    if not results:
        print("No results found.")
        return

    print(f"Found {len(results)} results:\n")

    for i, result in enumerate(results, 1):
        metadata = result['metadata']
        print(f"[{i}] {metadata.get('title', 'Untitled')}")
        print(f"    URL: {metadata.get('url', '')}")
        print(f"    Score: {result['score']:.3f}")
        print(f"    Chunk: {result['text'][:200]}...")
        print()


def cmd_stats(args):
    """Handle the stats command."""
    system = _build_system()

    stats = asyncio.run(system.get_stats())

    print("="*60)
    print("System Statistics")
    print("="*60)

    print("Vector Index:")
    index_stats = stats['vector_index']
    print(f"  Backend: {index_stats.get('backend', 'N/A')}")
    print(f"  State: {index_stats.get('state', 'N/A')}")
    print(f"  Documents: {index_stats.get('documents_count', 0)}")
    if 'dimension' in index_stats:
        print(f"  Dimension: {index_stats['dimension']}")
    print()

    print("Generation:")
    print(f"  Current model: {stats['generation']['current_model']}")
    print(f"  Available models: {', '.join(stats['generation']['available_models'])}")
    print()

    print("Embeddings:")
    embeddings = stats['embeddings']
    print(f"  Model: {embeddings['model']}")
    print(f"  Remote enabled: {embeddings['remote_enabled']}")
    print("="*60)


def cmd_health(args):
    """Handle the health command."""
    system = _build_system()

    health = asyncio.run(system.health())

    print(f"{'✓' if health['vector_store'] else '✗'} Vector store ({health['documents_count']} documents)")
    print(f"{'✓' if health['generation'] else '✗'} Generation (model: {health['current_model']})")

    if not (health['vector_store'] and health['generation']):
        sys.exit(1)


def cmd_clear(args):
    """Handle the clear command."""
    system = _build_system()

    asyncio.run(system.clear())
    print("✓ Vector index cleared")


async def _chat_loop(system: NewsChatSystem, show_sources: bool):
    session_id: Optional[str] = None
    printer = _print_event(show_sources)

    def emit(event: StreamEvent):
        nonlocal session_id
        if event.type == 'session':
            session_id = event.data['session_id']
        elif event.type == 'complete':
            print("\n")
            return
        printer(event)

    while True:
        question = (await asyncio.to_thread(input, "You: ")).strip()
        if question.lower() in ('exit', 'quit'):
            break
        if not question:
            continue
        await system.ask_streaming(question, session_id, emit)


def cmd_chat(args):
    """Handle the chat command."""
    system = _build_system()

    print("Interactive chat. Type 'exit' or 'quit' to leave.\n")
    try:
        asyncio.run(_chat_loop(system, not args.no_sources))
    except EOFError:
        print()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='News RAG Chat - ask questions about recent news',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ingest news from the configured RSS feeds
  python -m newsrag.cli ingest

  # Start over with an empty index
  python -m newsrag.cli ingest --clear

  # Ask a question
  python -m newsrag.cli ask "What happened in the election?"

  # Stream the answer
  python -m newsrag.cli ask "What happened in the election?" --stream

  # Search the index
  python -m newsrag.cli search "climate summit"

  # View statistics
  python -m newsrag.cli stats
        """
    )

    # Global arguments
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    # Subcommands
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Ingest command
    ingest_parser = subparsers.add_parser(
        'ingest',
        help='Ingest news from RSS feeds'
    )
    ingest_parser.add_argument(
        '--clear',
        action='store_true',
        help='Clear the index before ingesting'
    )
    ingest_parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable the progress bar'
    )
    ingest_parser.set_defaults(func=cmd_ingest)

    # Ask command
    ask_parser = subparsers.add_parser(
        'ask',
        help='Ask a question and get an AI-generated answer'
    )
    ask_parser.add_argument(
        'question',
        help='Question to ask'
    )
    ask_parser.add_argument(
        '--session',
        help='Session ID for multi-turn conversation'
    )
    ask_parser.add_argument(
        '--stream',
        action='store_true',
        help='Stream the answer as it is generated'
    )
    ask_parser.add_argument(
        '--no-sources',
        action='store_true',
        help='Do not print sources'
    )
    ask_parser.set_defaults(func=cmd_ask)

    # Search command
    search_parser = subparsers.add_parser(
        'search',
        help='Search for relevant news passages'
    )
    search_parser.add_argument(
        'query',
        help='Search query'
    )
    search_parser.add_argument(
        '--top-k',
        type=int,
        default=5,
        help='Number of results to return (default: 5)'
    )
    search_parser.set_defaults(func=cmd_search)

    # Stats command
    stats_parser = subparsers.add_parser(
        'stats',
        help='Display system statistics'
    )
    stats_parser.set_defaults(func=cmd_stats)

    # Health command
    health_parser = subparsers.add_parser(
        'health',
        help='Check the vector store and generation models'
    )
    health_parser.set_defaults(func=cmd_health)

    # Clear command
    clear_parser = subparsers.add_parser(
        'clear',
        help='Remove all indexed news'
    )
    clear_parser.set_defaults(func=cmd_clear)

    # Chat command
    chat_parser = subparsers.add_parser(
        'chat',
        help='Start an interactive chat session'
    )
    chat_parser.add_argument(
        '--no-sources',
        action='store_true',
        help='Do not print sources'
    )
    chat_parser.set_defaults(func=cmd_chat)

    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()

    # Parse arguments
    args = parser.parse_args(argv)

    # Execute command
    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        # Setup logging
        setup_logging(args.verbose, get_config().log_level)
        args.func(args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\n✗ Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
