from __future__ import annotations

from loguru import logger

from stream_relay.application.error import AccountNotFound
from stream_relay.application.ports import CredentialResolver, StateStoreProtocol
from stream_relay.domain.models import Account, Platform

ACCOUNTS_PREFIX = "accounts"


def account_key(platform: Platform, account_id: str) -> str:
    return f"{ACCOUNTS_PREFIX}:{platform.value}:{account_id}"


class AccountStore:
    """Account records kept under the ``accounts`` namespace of the store."""

    def __init__(self, store: StateStoreProtocol) -> None:
        self.store = store

    def save(self, account: Account) -> None:
        self.store.save(
            account_key(account.platform, account.id), account.model_dump(mode="json")
        )

    def get(self, platform: Platform, account_id: str) -> Account | None:
        raw = self.store.get(account_key(platform, account_id))
        if raw is None:
            return None
        return Account.model_validate(raw)

    def list(self, platform: Platform | None = None) -> list[Account]:
        prefix = ACCOUNTS_PREFIX if platform is None else f"{ACCOUNTS_PREFIX}:{platform.value}"
        return [Account.model_validate(raw) for _, raw in self.store.list_prefix(prefix)]

    def delete(self, platform: Platform, account_id: str) -> bool:
        return self.store.delete(account_key(platform, account_id))


class StoredCredentialResolver(CredentialResolver):
    """Resolve bearer tokens from stored account records.

    Tokens are used as stored; refreshing them is left to whoever writes the
    account records.
    """

    def __init__(self, accounts: AccountStore) -> None:
        self.accounts = accounts

    def resolve(self, platform: Platform, account_id: str) -> str:
        account = self.accounts.get(platform, account_id)
        if account is None:
            raise AccountNotFound(platform=platform.value, account_id=account_id)
        logger.trace(f"resolved credential for {platform.value}:{account_id}")
        return account.access_token
