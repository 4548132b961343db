"""
CLI Tests for the News RAG Chat Backend

Help output is checked through a subprocess; commands run in-process
against a mocked NewsChatSystem.
"""

import subprocess
import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from newsrag import cli
from newsrag.query.handler import StreamEvent


PROJECT_ROOT = Path(__file__).parent.parent


def run_cli(*args):
    """Helper to run CLI commands in a subprocess."""
    return subprocess.run(
        [sys.executable, '-m', 'newsrag.cli'] + list(args),
        capture_output=True,
        text=True,
        timeout=60,
        cwd=PROJECT_ROOT,
    )


@pytest.fixture
def mock_system():
    """Patch the system constructor used by every command."""
    system = Mock()
    with patch('newsrag.cli.NewsChatSystem', return_value=system), \
            patch('newsrag.cli.setup_logging'):
        yield system


def run_main(*argv):
    """Run main() and return its exit code (0 when it returns normally)."""
    try:
        cli.main(list(argv))
    except SystemExit as e:
        return e.code
    return 0


class TestCLIHelp:
    """Test help output."""

    def test_cli_help(self):
        result = run_cli('--help')

        assert result.returncode == 0
        assert 'News RAG Chat' in result.stdout
        for command in ('ingest', 'ask', 'search', 'stats', 'health', 'clear', 'chat'):
            assert command in result.stdout

    def test_cli_no_command(self):
        result = run_cli()

        assert result.returncode == 1
        assert 'News RAG Chat' in result.stdout

    def test_ask_help(self):
        result = run_cli('ask', '--help')

        assert result.returncode == 0
        assert '--session' in result.stdout
        assert '--stream' in result.stdout

    def test_ask_missing_argument(self):
        result = run_cli('ask')

        assert result.returncode != 0
        assert 'required' in result.stderr.lower() or 'error' in result.stderr.lower()


class TestAskCommand:
    """Test the ask command."""

    def test_batch_answer(self, mock_system, capsys):
        mock_system.ask = AsyncMock(return_value={
            'success': True,
            'session_id': 's-1',
            'answer': "The incumbent won.",
            'sources': [{'score': 0.9, 'metadata': {'title': "Election Results", 'url': "https://example.com/e"}}],
            'message_id': 'm-1',
        })

        assert run_main('ask', 'Who won?') == 0

        out = capsys.readouterr().out
        assert "The incumbent won." in out
        assert "[1] Election Results (0.900)" in out
        assert "Session ID: s-1" in out
        mock_system.ask.assert_awaited_once_with('Who won?', session_id=None)

    def test_session_and_no_sources(self, mock_system, capsys):
        mock_system.ask = AsyncMock(return_value={
            'success': True,
            'session_id': 's-1',
            'answer': "Yes.",
            'sources': [{'score': 0.9, 'metadata': {'title': "Hidden"}}],
            'message_id': 'm-2',
        })

        assert run_main('ask', 'And then?', '--session', 's-1', '--no-sources') == 0

        assert "Hidden" not in capsys.readouterr().out
        mock_system.ask.assert_awaited_once_with('And then?', session_id='s-1')

    def test_failure_exits_nonzero(self, mock_system, capsys):
        mock_system.ask = AsyncMock(return_value={
            'success': False,
            'error_type': 'internal',
            'error': "Internal server error",
        })

        assert run_main('ask', 'Who won?') == 1
        assert "Internal server error" in capsys.readouterr().out

    def test_streamed_answer(self, mock_system, capsys):
        async def ask_streaming(question, session_id, emit):
            emit(StreamEvent('session', {'session_id': 's-9'}))
            emit(StreamEvent('start', {'message_id': 'm-9'}))
            emit(StreamEvent('sources', {'message_id': 'm-9', 'sources': []}))
            emit(StreamEvent('chunk', {'message_id': 'm-9', 'text': "Votes"}))
            emit(StreamEvent('chunk', {'message_id': 'm-9', 'text': " counted"}))
            emit(StreamEvent('complete', {'message_id': 'm-9', 'session_id': 's-9', 'text': "Votes counted"}))

        mock_system.ask_streaming = ask_streaming

        assert run_main('ask', 'Election?', '--stream') == 0

        out = capsys.readouterr().out
        assert "Votes counted" in out
        assert "Session ID: s-9" in out

    def test_streamed_error_exits_nonzero(self, mock_system, capsys):
        async def ask_streaming(question, session_id, emit):
            emit(StreamEvent('error', {'error_type': 'internal', 'error': "Internal server error"}))

        mock_system.ask_streaming = ask_streaming

        assert run_main('ask', 'Election?', '--stream') == 1


class TestOtherCommands:
    """Test search, stats, health, clear and ingest."""

    def test_search(self, mock_system, capsys):
        mock_system.search = AsyncMock(return_value=[
            {'article_id': 'a', 'text': "Votes were counted overnight.", 'score': 0.75,
             'metadata': {'title': "Election Results", 'url': "https://example.com/e"}},
        ])

        assert run_main('search', 'election', '--top-k', '3') == 0

        out = capsys.readouterr().out
        assert "Found 1 results" in out
        assert "Score: 0.750" in out
        mock_system.search.assert_awaited_once_with('election', top_k=3)

    def test_search_no_results(self, mock_system, capsys):
        mock_system.search = AsyncMock(return_value=[])

        assert run_main('search', 'nothing') == 0
        assert "No results found." in capsys.readouterr().out

    def test_stats(self, mock_system, capsys):
        mock_system.get_stats = AsyncMock(return_value={
            'vector_index': {'backend': 'faiss', 'state': 'ready', 'documents_count': 12, 'dimension': 768},
            'generation': {'current_model': 'llama3.1:latest', 'available_models': ['llama3.1:latest']},
            'embeddings': {'model': 'nomic-embed-text', 'remote_enabled': True},
            'active_sessions': 0,
        })

        assert run_main('stats') == 0

        out = capsys.readouterr().out
        assert "Documents: 12" in out
        assert "Current model: llama3.1:latest" in out

    def test_health_ok(self, mock_system, capsys):
        mock_system.health = AsyncMock(return_value={
            'vector_store': True, 'generation': True, 'documents_count': 3, 'current_model': 'm1',
        })

        assert run_main('health') == 0
        assert "✓ Vector store (3 documents)" in capsys.readouterr().out

    def test_health_unhealthy(self, mock_system, capsys):
        mock_system.health = AsyncMock(return_value={
            'vector_store': False, 'generation': True, 'documents_count': 0, 'current_model': 'm1',
        })

        assert run_main('health') == 1
        assert "✗ Vector store" in capsys.readouterr().out

    def test_clear(self, mock_system, capsys):
        mock_system.clear = AsyncMock()

        assert run_main('clear') == 0

        mock_system.clear.assert_awaited_once()
        assert "Vector index cleared" in capsys.readouterr().out

    def test_ingest(self, mock_system, capsys):
        mock_system.ingest = AsyncMock(return_value={
            'articles_fetched': 4, 'chunks_stored': 9, 'failed_articles': 0,
            'documents_count': 9, 'processing_time': 1.5,
        })

        assert run_main('ingest', '--clear', '--no-progress') == 0

        mock_system.ingest.assert_awaited_once_with(clear=True, show_progress=False)
        assert "Chunks stored: 9" in capsys.readouterr().out

    def test_ingest_all_failed(self, mock_system):
        mock_system.ingest = AsyncMock(return_value={
            'articles_fetched': 2, 'chunks_stored': 0, 'failed_articles': 2,
            'documents_count': 0, 'processing_time': 0.1,
        })

        assert run_main('ingest') == 1

    def test_unexpected_error(self, mock_system, capsys):
        mock_system.clear = AsyncMock(side_effect=RuntimeError("disk full"))

        assert run_main('clear') == 1
        assert "✗ Error: disk full" in capsys.readouterr().out


class TestChatCommand:
    """Test the interactive chat loop."""

    def test_chat_reuses_session_until_exit(self, mock_system, capsys):
        sessions_seen = []

        async def ask_streaming(question, session_id, emit):
            sessions_seen.append(session_id)
            emit(StreamEvent('session', {'session_id': 's-1'}))
            emit(StreamEvent('chunk', {'message_id': 'm', 'text': f"re: {question}"}))
            emit(StreamEvent('complete', {'message_id': 'm', 'session_id': 's-1', 'text': ""}))

        mock_system.ask_streaming = ask_streaming

        with patch('builtins.input', side_effect=["first", "", "second", "exit"]):
            assert run_main('chat', '--no-sources') == 0

        assert sessions_seen == [None, 's-1']
        assert "re: second" in capsys.readouterr().out

    def test_chat_ends_on_eof(self, mock_system):
        with patch('builtins.input', side_effect=EOFError):
            assert run_main('chat') == 0
