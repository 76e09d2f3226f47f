from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple
import asyncio
from collections import defaultdict

from pydantic import ValidationError
import structlog

from models import LedgerState, UserBalance
from storage import JsonFileStorage, PersistenceError, StateStorage

logger = structlog.get_logger()


class LedgerRepository(ABC):
    @abstractmethod
    async def load(self) -> None:
        """Load persisted state, falling back to defaults."""
        pass

    @abstractmethod
    async def get_user(self, username: str) -> Optional[UserBalance]:
        """Get a user. Returns None if the user was never created."""
        pass

    @abstractmethod
    async def ensure_user(self, username: str) -> UserBalance:
        """Get a user, creating it with a zero balance if needed."""
        pass

    @abstractmethod
    async def set_balance(self, username: str, balance: float, persist: bool = True) -> None:
        """Set a user's balance, optionally flushing the whole state."""
        pass

    @abstractmethod
    async def persist(self) -> None:
        """Flush the whole state."""
        pass

    @abstractmethod
    async def get_rates(self) -> Tuple[float, float]:
        """Return (usdToNGN, davCoinValueUSD)."""
        pass

    @abstractmethod
    async def get_users_count(self) -> int:
        """Get total number of users."""
        pass

    @abstractmethod
    def get_lock(self, username: str) -> asyncio.Lock:
        """Get the lock serializing balance updates for one user."""
        pass


class FileLedgerRepository(LedgerRepository):
    def __init__(self, storage: StateStorage, usd_to_ngn: float, dav_coin_value_usd: float):
        self.storage = storage
        self.state = LedgerState(usdToNGN=usd_to_ngn, davCoinValueUSD=dav_coin_value_usd)
        self.locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def load(self) -> None:
        try:
            if self.storage.exists():
                # Persisted top-level keys replace the defaults wholesale
                merged = {**self.state.model_dump(), **self.storage.read()}
                self.state = LedgerState.model_validate(merged)
                logger.info("Ledger state loaded", users_count=len(self.state.users))
            else:
                self.storage.write({"users": {}})
                logger.info("Created new ledger data file")
        except (PersistenceError, ValidationError) as e:
            logger.error("Ledger state load failed", error=str(e))

    async def get_user(self, username: str) -> Optional[UserBalance]:
        return self.state.users.get(username)

    async def ensure_user(self, username: str) -> UserBalance:
        user = self.state.users.get(username)
        if user is None:
            user = UserBalance(balanceDC=0)
            self.state.users[username] = user
            logger.info("User created", username=username)
            await self.persist()
        return user

    async def set_balance(self, username: str, balance: float, persist: bool = True) -> None:
        if username not in self.state.users:
            raise ValueError(f"User {username} does not exist")
        self.state.users[username].balanceDC = balance
        if persist:
            await self.persist()

    async def persist(self) -> None:
        try:
            self.storage.write(self.state.model_dump())
        except PersistenceError as e:
            logger.error("Ledger state save failed", error=str(e))

    async def get_rates(self) -> Tuple[float, float]:
        return self.state.usdToNGN, self.state.davCoinValueUSD

    async def get_users_count(self) -> int:
        return len(self.state.users)

    def get_lock(self, username: str) -> asyncio.Lock:
        """Get lock for specific user."""
        return self.locks[username]


_ledger_repo: Optional[FileLedgerRepository] = None


def get_ledger_repository() -> LedgerRepository:
    global _ledger_repo
    if _ledger_repo is None:
        from config import get_settings
        settings = get_settings()
        _ledger_repo = FileLedgerRepository(
            JsonFileStorage(settings.data_file),
            settings.usd_to_ngn,
            settings.dav_coin_value_usd,
        )
    return _ledger_repo


# For tests
def reset_repositories(
    data_file: str,
    usd_to_ngn: float = 1500.0,
    dav_coin_value_usd: float = 0.01
) -> FileLedgerRepository:
    """Replace the ledger repository with a fresh one backed by `data_file` (for testing only)."""
    global _ledger_repo
    _ledger_repo = FileLedgerRepository(JsonFileStorage(data_file), usd_to_ngn, dav_coin_value_usd)
    return _ledger_repo
