import json
import pytest
from unittest.mock import patch

from repositories import FileLedgerRepository
from storage import JsonFileStorage, PersistenceError


def make_repo(path):
    return FileLedgerRepository(JsonFileStorage(path), usd_to_ngn=1500, dav_coin_value_usd=0.01)


class TestJsonFileStorage:
    """Test the JSON file storage."""

    def test_write_then_read(self, tmp_path):
        """Test written documents read back."""
        storage = JsonFileStorage(tmp_path / "nested" / "data.json")
        storage.write({"users": {"alice": {"balanceDC": 5}}})

        assert storage.exists()
        assert storage.read() == {"users": {"alice": {"balanceDC": 5}}}
        assert not (tmp_path / "nested" / "data.json.tmp").exists()

    def test_read_rejects_non_object(self, tmp_path):
        """Test a JSON array is rejected."""
        path = tmp_path / "data.json"
        path.write_text("[1, 2, 3]")

        with pytest.raises(PersistenceError):
            JsonFileStorage(path).read()

    def test_read_rejects_invalid_json(self, tmp_path):
        """Test invalid JSON is rejected."""
        path = tmp_path / "data.json"
        path.write_text("{not json")

        with pytest.raises(PersistenceError):
            JsonFileStorage(path).read()


class TestLoad:
    """Test loading ledger state at startup."""

    @pytest.mark.asyncio
    async def test_missing_file_is_created_empty(self, tmp_path):
        """Test a missing file is created with no users."""
        path = tmp_path / "data.json"
        repo = make_repo(path)

        await repo.load()

        assert json.loads(path.read_text()) == {"users": {}}
        assert await repo.get_users_count() == 0
        assert await repo.get_rates() == (1500, 0.01)

    @pytest.mark.asyncio
    async def test_persisted_values_override_defaults(self, tmp_path):
        """Test persisted rates replace configured ones."""
        path = tmp_path / "data.json"
        path.write_text(json.dumps({
            "users": {"alice": {"balanceDC": 12}},
            "usdToNGN": 1600,
            "davCoinValueUSD": 0.02
        }))
        repo = make_repo(path)

        await repo.load()

        assert (await repo.get_user("alice")).balanceDC == 12
        assert await repo.get_rates() == (1600, 0.02)

    @pytest.mark.asyncio
    async def test_partial_document_keeps_default_rates(self, tmp_path):
        """Test absent keys keep their defaults."""
        path = tmp_path / "data.json"
        path.write_text(json.dumps({"users": {"bob": {"balanceDC": 3}}}))
        repo = make_repo(path)

        await repo.load()

        assert (await repo.get_user("bob")).balanceDC == 3
        assert await repo.get_rates() == (1500, 0.01)

    @pytest.mark.asyncio
    async def test_unknown_keys_survive_a_save(self, tmp_path):
        """Test extra top-level keys are preserved."""
        path = tmp_path / "data.json"
        path.write_text(json.dumps({"users": {}, "note": "kept"}))
        repo = make_repo(path)

        await repo.load()
        await repo.ensure_user("alice")

        assert json.loads(path.read_text())["note"] == "kept"

    @pytest.mark.asyncio
    @patch('repositories.logger')
    async def test_corrupt_file_keeps_defaults(self, mock_logger, tmp_path):
        """Test a corrupt file is logged and ignored."""
        path = tmp_path / "data.json"
        path.write_text("{corrupt")
        repo = make_repo(path)

        await repo.load()

        mock_logger.error.assert_called()
        assert await repo.get_users_count() == 0
        assert await repo.get_rates() == (1500, 0.01)


class TestPersist:
    """Test persisting ledger state."""

    @pytest.mark.asyncio
    async def test_ensure_user_persists_only_new_users(self, tmp_path):
        """Test existing users are not re-saved."""
        path = tmp_path / "data.json"
        repo = make_repo(path)

        await repo.ensure_user("alice")
        path.unlink()
        await repo.ensure_user("alice")

        assert not path.exists()

    @pytest.mark.asyncio
    async def test_set_balance_without_persist(self, tmp_path):
        """Test in-memory only balance updates."""
        path = tmp_path / "data.json"
        repo = make_repo(path)
        await repo.ensure_user("alice")

        await repo.set_balance("alice", 9, persist=False)

        assert json.loads(path.read_text())["users"]["alice"]["balanceDC"] == 0
        assert (await repo.get_user("alice")).balanceDC == 9

    @pytest.mark.asyncio
    async def test_set_balance_unknown_user(self, tmp_path):
        """Test updating a missing user fails."""
        repo = make_repo(tmp_path / "data.json")

        with pytest.raises(ValueError):
            await repo.set_balance("ghost", 1)

    @pytest.mark.asyncio
    @patch('repositories.logger')
    async def test_save_failure_is_logged_not_raised(self, mock_logger, tmp_path):
        """Test save errors are swallowed."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        repo = make_repo(blocker / "data.json")

        user = await repo.ensure_user("alice")

        assert user.balanceDC == 0
        mock_logger.error.assert_called()
