"""
Tests for blob stores, account stores and identity resolution.
"""

import json

import pytest


# ============== Tests for FileBlobStore ==============

class TestFileBlobStore:
    """Tests for the per-user file store."""

    async def test_absent_blob(self, tmp_path):
        from cosimo.store import FileBlobStore

        store = FileBlobStore(tmp_path / "blobs")

        assert await store.get_blob("user-1") is None

    async def test_put_then_get(self, tmp_path):
        from cosimo.store import FileBlobStore

        store = FileBlobStore(tmp_path / "blobs")
        await store.put_blob("user-1", '{"objectives":[]}')

        assert await store.get_blob("user-1") == '{"objectives":[]}'
        assert not list((tmp_path / "blobs").glob(".*.tmp"))

    async def test_overwrite(self, tmp_path):
        from cosimo.store import FileBlobStore

        store = FileBlobStore(tmp_path)
        await store.put_blob("user-1", "first")
        await store.put_blob("user-1", "second")

        assert await store.get_blob("user-1") == "second"

    def test_path_is_sanitized(self, tmp_path):
        """Test a hostile user id cannot escape the directory."""
        from cosimo.store import FileBlobStore

        path = FileBlobStore(tmp_path).path_for("../../etc/passwd")

        assert path.parent == tmp_path
        assert "/" not in path.name

    async def test_unwritable_directory(self, tmp_path):
        from cosimo.store import FileBlobStore
        from cosimo.utils import StoreError

        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        store = FileBlobStore(blocker)

        with pytest.raises(StoreError):
            await store.put_blob("user-1", "data")

    def test_lock_is_per_user(self, tmp_path):
        from cosimo.store import FileBlobStore

        store = FileBlobStore(tmp_path)

        assert store.lock("a") is store.lock("a")
        assert store.lock("a") is not store.lock("b")


# ============== Tests for RemoteBlobStore ==============

class TestRemoteBlobStore:
    """Tests for the HTTP-backed blob store."""

    def _store(self, handler):
        import httpx

        from cosimo.store import RemoteBlobStore

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return RemoteBlobStore("http://cosimo.test/", "csk_key", client)

    async def test_get(self):
        import httpx

        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"data": "sealed"})

        store = self._store(handler)

        assert await store.get_blob("ignored") == "sealed"
        assert str(seen[0].url) == "http://cosimo.test/api/blob"
        assert seen[0].headers["x-api-key"] == "csk_key"
        await store.aclose()

    async def test_put(self):
        import httpx

        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        store = self._store(handler)
        await store.put_blob("ignored", "sealed")

        assert bodies == [{"data": "sealed"}]
        await store.aclose()

    async def test_http_error(self):
        import httpx

        from cosimo.utils import StoreError

        store = self._store(lambda request: httpx.Response(401, json={"error": "Invalid API key"}))

        with pytest.raises(StoreError, match="401"):
            await store.get_blob("ignored")
        await store.aclose()

    async def test_unreachable(self):
        import httpx

        from cosimo.utils import StoreError

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        store = self._store(handler)

        with pytest.raises(StoreError, match="unreachable"):
            await store.put_blob("ignored", "sealed")
        await store.aclose()


# ============== Tests for account stores ==============

class TestAccountStores:
    """Tests for MemoryAccountStore and FileAccountStore."""

    async def test_memory_lookup(self, accounts):
        account = await accounts.get_by_api_key("csk_secret")

        assert account.user_id == "secret"
        assert await accounts.get_by_api_key("csk_other") is None

    async def test_create_account(self, accounts):
        account = await accounts.create_account("new-user")

        assert account.api_key.startswith("csk_")
        assert account.encryption_enabled is False
        assert await accounts.get_by_api_key(account.api_key) == account

    async def test_create_duplicate_account(self, accounts):
        from cosimo.utils import InvalidArguments

        with pytest.raises(InvalidArguments, match="already exists"):
            await accounts.create_account("plain")

        assert (await accounts.get("plain")).api_key == "csk_plain"

    async def test_file_store_persists(self, tmp_path):
        from cosimo.models import Account
        from cosimo.store import FileAccountStore

        path = tmp_path / "accounts.json"
        await FileAccountStore(path).save(Account(user_id="u1", api_key="csk_one"))

        reopened = FileAccountStore(path)

        assert (await reopened.get("u1")).api_key == "csk_one"
        assert (await reopened.get_by_api_key("csk_one")).user_id == "u1"
        assert await reopened.get("u2") is None

    async def test_file_store_missing_file(self, tmp_path):
        from cosimo.store import FileAccountStore

        assert await FileAccountStore(tmp_path / "none.json").get_by_api_key("csk_x") is None

    async def test_file_store_corrupt(self, tmp_path):
        from cosimo.store import FileAccountStore
        from cosimo.utils import StoreError

        path = tmp_path / "accounts.json"
        path.write_text("{broken")

        with pytest.raises(StoreError):
            await FileAccountStore(path).get("u1")


# ============== Tests for identity resolution ==============

class TestAuth:
    """Tests for read_credentials(), ApiKeyAuthenticator and static_identity()."""

    def test_headers_win_over_query(self):
        from cosimo.auth import read_credentials

        api_key, passphrase = read_credentials(
            {"x-api-key": "from-header"},
            {"api_key": "from-query", "passphrase": "query-pass"},
        )

        assert api_key == "from-header"
        assert passphrase == "query-pass"

    async def test_plain_account(self, accounts):
        from cosimo.auth import ApiKeyAuthenticator

        identity = await ApiKeyAuthenticator(accounts).authenticate("csk_plain", "ignored")

        assert identity.user_id == "plain"
        assert identity.encryption_enabled is False
        assert identity.passphrase is None

    async def test_encrypted_account(self, accounts):
        from cosimo.auth import ApiKeyAuthenticator

        identity = await ApiKeyAuthenticator(accounts).authenticate("csk_secret", "open sesame")

        assert identity.encryption_enabled is True
        assert identity.passphrase == "open sesame"

    @pytest.mark.parametrize(
        "api_key, passphrase, expected",
        [
            (None, None, "AuthenticationError"),
            ("csk_nobody", None, "AuthenticationError"),
            ("csk_secret", None, "PassphraseRequired"),
            ("csk_secret", "wrong", "InvalidPassphrase"),
        ],
    )
    async def test_rejections(self, accounts, api_key, passphrase, expected):
        from cosimo.auth import ApiKeyAuthenticator
        from cosimo.utils import CosimoError

        with pytest.raises(CosimoError) as exc_info:
            await ApiKeyAuthenticator(accounts).authenticate(api_key, passphrase)

        assert type(exc_info.value).__name__ == expected

    def test_passphrase_not_in_repr(self):
        from cosimo.models import Identity

        identity = Identity(user_id="u", encryption_enabled=True, passphrase="hunter22")

        assert "hunter22" not in repr(identity)

    def test_static_identity(self):
        from cosimo.auth import static_identity
        from cosimo.config import Settings

        plain = static_identity(Settings(user_id="me"))
        sealed = static_identity(Settings(user_id="me", passphrase="local secret"))

        assert plain.encryption_enabled is False
        assert sealed.encryption_enabled is True
        assert sealed.passphrase == "local secret"

    async def test_enable_unknown_account(self, accounts, blob_store):
        from cosimo.auth import enable_account_encryption
        from cosimo.utils import AuthenticationError

        with pytest.raises(AuthenticationError):
            await enable_account_encryption(accounts, blob_store, "ghost", "long enough")

    async def test_verifier_runs_off_the_event_loop(self, accounts, monkeypatch):
        """Test passphrase verification goes through a worker thread."""
        import anyio.to_thread

        from cosimo.auth import ApiKeyAuthenticator
        from cosimo.crypto import verify_passphrase

        offloaded = []
        run_sync = anyio.to_thread.run_sync

        async def recording_run_sync(func, *args, **kwargs):
            offloaded.append(func)
            return await run_sync(func, *args, **kwargs)

        monkeypatch.setattr(anyio.to_thread, "run_sync", recording_run_sync)

        await ApiKeyAuthenticator(accounts).authenticate("csk_secret", "open sesame")

        assert verify_passphrase in offloaded
