"""Tests for session commit handling and after-commit callbacks."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.infra.database import (
    AFTER_COMMIT_KEY,
    commit_session,
    get_db_context,
    run_after_commit,
)


@pytest.fixture
def mock_session():
    """Create mock AsyncSession."""
    session = MagicMock()
    session.info = {}
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    return session


class TestCommitSession:
    """Test commit_session ordering."""

    @pytest.mark.asyncio
    async def test_callbacks_run_after_commit(self, mock_session):
        order = []
        mock_session.commit = AsyncMock(side_effect=lambda: order.append("commit"))

        async def invalidate():
            order.append("invalidate")

        run_after_commit(mock_session, invalidate)
        await commit_session(mock_session)

        assert order == ["commit", "invalidate"]
        assert AFTER_COMMIT_KEY not in mock_session.info

    @pytest.mark.asyncio
    async def test_failed_commit_skips_callbacks(self, mock_session):
        callback = AsyncMock()
        mock_session.commit = AsyncMock(side_effect=RuntimeError("commit failed"))
        run_after_commit(mock_session, callback)

        with pytest.raises(RuntimeError):
            await commit_session(mock_session)

        callback.assert_not_awaited()


class TestGetDbContext:
    """Test the context manager used outside requests."""

    @pytest.mark.asyncio
    async def test_commit_runs_callbacks(self, mock_session):
        callback = AsyncMock()

        with patch("app.infra.database.async_session_factory", return_value=mock_session):
            async with get_db_context() as db:
                run_after_commit(db, callback)

        mock_session.commit.assert_awaited_once()
        callback.assert_awaited_once()
        mock_session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rollback_drops_callbacks(self, mock_session):
        callback = AsyncMock()

        with patch("app.infra.database.async_session_factory", return_value=mock_session):
            with pytest.raises(ValueError):
                async with get_db_context() as db:
                    run_after_commit(db, callback)
                    raise ValueError("write failed")

        mock_session.rollback.assert_awaited_once()
        callback.assert_not_awaited()
        assert AFTER_COMMIT_KEY not in mock_session.info
