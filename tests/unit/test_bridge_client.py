"""Tests for the async bridge client."""
from unittest.mock import AsyncMock, Mock, patch

import aiohttp
import pytest

from storjcli.core.api import AsyncBridgeClient, BridgeConfig, RetryConfig, ShardStream
from storjcli.core.crypto import sha256
from storjcli.core.exceptions import (
    BridgeError,
    BridgeNotFoundError,
    NetworkTransferError,
    TokenAcquisitionError,
    ValidationError,
)
from storjcli.core.transfer import Token, TokenBroker


class FakeResponse:
    """Async context manager standing in for an aiohttp response."""

    def __init__(self, status: int, body: str = ''):
        self.status = status
        self._body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def text(self):
        return self._body


def farmer(node_id: str) -> dict:
    return {
        'token': 'shard-token',
        'farmer': {'nodeID': node_id, 'address': '10.0.0.1', 'port': 4000},
    }


@pytest.fixture
def client():
    """Bridge client with credentials and fast retries."""
    config = BridgeConfig(
        url='https://bridge.test/',
        user='me@example.com',
        password='secret',
        retry=RetryConfig(max_retries=2, base_delay=0)
    )
    return AsyncBridgeClient(config)


@pytest.fixture
def session(client):
    """Fake aiohttp session injected into the client."""
    session = Mock()
    with patch.object(client, '_ensure_session', AsyncMock(return_value=session)):
        with patch('storjcli.core.api.bridge_client.asyncio.sleep', AsyncMock()):
            yield session


class TestBridgeClientRequest:
    """Test suite for AsyncBridgeClient.request."""

    @pytest.mark.asyncio
    async def test_returns_decoded_json(self, client, session):
        """Test JSON bodies are decoded."""
        session.request.return_value = FakeResponse(200, '{"id": "abc"}')

        result = await client.request('GET', '/buckets/abc')

        assert result == {'id': 'abc'}
        args, kwargs = session.request.call_args
        assert args == ('GET', 'https://bridge.test/buckets/abc')

    @pytest.mark.asyncio
    async def test_empty_body(self, client, session):
        """Test empty bodies decode to None."""
        session.request.return_value = FakeResponse(204)

        assert await client.request('DELETE', '/buckets/abc') is None

    @pytest.mark.asyncio
    async def test_basic_auth_uses_password_digest(self, client, session):
        """Test the password is sent as its SHA-256 hex digest."""
        session.request.return_value = FakeResponse(200, '{}')

        await client.request('GET', '/')

        auth = session.request.call_args.kwargs['auth']
        assert auth.login == 'me@example.com'
        assert auth.password == sha256('secret').hex()

    def test_basic_auth_accepts_saved_digest(self):
        """Test a stored password digest is sent as is."""
        digest = sha256('secret').hex()
        client = AsyncBridgeClient(BridgeConfig(user='me@example.com', password_hash=digest))

        auth = client._auth()

        assert auth.login == 'me@example.com'
        assert auth.password == digest

    def test_no_auth_without_credentials(self):
        """Test anonymous requests carry no auth."""
        anonymous = AsyncBridgeClient(BridgeConfig())

        assert anonymous._auth() is None

    @pytest.mark.asyncio
    async def test_params_drop_none(self, client, session):
        """Test None query values are dropped and the rest stringified."""
        session.request.return_value = FakeResponse(200, '[]')

        await client.request('GET', '/x', params={'skip': 0, 'exclude': None})

        assert session.request.call_args.kwargs['params'] == {'skip': '0'}

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, client, session):
        """Test 5xx responses are retried."""
        session.request.side_effect = [
            FakeResponse(503, 'busy'),
            FakeResponse(200, '{"ok": true}'),
        ]

        assert await client.request('GET', '/') == {'ok': True}
        assert session.request.call_count == 2

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self, client, session):
        """Test a persistent 5xx becomes a BridgeError."""
        session.request.side_effect = lambda *a, **kw: FakeResponse(500, '{"error": "down"}')

        with pytest.raises(BridgeError, match="down") as exc_info:
            await client.request('GET', '/')

        assert exc_info.value.status == 500
        assert session.request.call_count == 3

    @pytest.mark.asyncio
    async def test_not_found(self, client, session):
        """Test 404 maps to BridgeNotFoundError with the bridge message."""
        session.request.return_value = FakeResponse(404, '{"error": "File not found"}')

        with pytest.raises(BridgeNotFoundError, match="File not found") as exc_info:
            await client.request('GET', '/buckets/b/files/f/info')

        assert exc_info.value.status == 404
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, client, session):
        """Test 4xx responses fail immediately."""
        session.request.return_value = FakeResponse(400, 'Bad request')

        with pytest.raises(BridgeError, match="Bad request"):
            await client.request('POST', '/buckets')

        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_network_errors_retried(self, client, session):
        """Test connection failures are retried then surfaced."""
        session.request.side_effect = aiohttp.ClientConnectionError("refused")

        with pytest.raises(BridgeError, match="Network error"):
            await client.request('GET', '/')

        assert session.request.call_count == 3

    @pytest.mark.asyncio
    async def test_closed_client(self, client):
        """Test a closed client refuses requests."""
        await client.close()

        with pytest.raises(BridgeError, match="closed"):
            await client.request('GET', '/')


class TestBridgeClientOperations:
    """Test suite for bridge operations built on request()."""

    @pytest.mark.asyncio
    async def test_create_token(self, client):
        """Test token creation posts the operation and keeps key material."""
        with patch.object(client, 'request', AsyncMock(return_value={
            'token': 'tok', 'encryptionKey': 'key', 'expires': '2016-01-01'
        })) as request:
            token = await client.create_token('bucket', 'PUSH')

        request.assert_awaited_once_with(
            'POST', '/buckets/bucket/tokens', json_data={'operation': 'PUSH'}, retry=False
        )
        assert token == Token('tok', 'bucket', 'PUSH', 'key', '2016-01-01')

    @pytest.mark.asyncio
    async def test_get_file_info(self, client):
        """Test file info is parsed into metadata."""
        with patch.object(client, 'request', AsyncMock(return_value={
            'filename': 'a.txt', 'mimetype': 'text/plain', 'size': 12, 'id': 'fid'
        })) as request:
            meta = await client.get_file_info('bucket', 'fid')

        request.assert_awaited_once_with('GET', '/buckets/bucket/files/fid/info')
        assert meta.filename == 'a.txt'
        assert meta.size == 12

    @pytest.mark.asyncio
    async def test_get_file_pointers(self, client):
        """Test pointer requests carry the token and the exclusions."""
        token = Token('tok', 'bucket', 'PULL')
        with patch.object(client, 'request', AsyncMock(return_value=[
            {'index': 0, 'hash': 'h0', 'size': 10, **farmer('A')}
        ])) as request:
            pointers = await client.get_file_pointers(
                'bucket', 'fid', token, skip=6, limit=6, exclude=['X', 'Y']
            )

        request.assert_awaited_once_with(
            'GET',
            '/buckets/bucket/files/fid',
            params={'skip': 6, 'limit': 6, 'exclude': 'X,Y'},
            headers={'x-token': 'tok'}
        )
        assert pointers[0].farmer.node_id == 'A'
        assert pointers[0].farmer.url == 'http://10.0.0.1:4000'

    @pytest.mark.asyncio
    async def test_list_buckets(self, client):
        """Test bucket listings are parsed."""
        with patch.object(client, 'request', AsyncMock(return_value=[
            {'id': 'b1', 'name': 'photos', 'storage': 5}
        ])):
            buckets = await client.list_buckets()

        assert [(b.id, b.name, b.storage) for b in buckets] == [('b1', 'photos', 5)]

    @pytest.mark.asyncio
    async def test_update_bucket_sends_only_changes(self, client):
        """Test unset fields are left out of the bucket update."""
        with patch.object(client, 'request', AsyncMock(return_value={
            'id': 'b1', 'name': 'renamed', 'storage': 10, 'transfer': 20
        })) as request:
            bucket = await client.update_bucket('b1', name='renamed', transfer=20)

        request.assert_awaited_once_with(
            'PATCH', '/buckets/b1', json_data={'name': 'renamed', 'transfer': 20}
        )
        assert (bucket.name, bucket.transfer) == ('renamed', 20)

    @pytest.mark.asyncio
    async def test_frames(self, client):
        """Test frame endpoints and shard counting."""
        request = AsyncMock(side_effect=[
            {'id': 'f1', 'created': '2016-05-01'},
            [{'id': 'f1', 'created': '2016-05-01', 'shards': [1, 2, 3]}],
            {'id': 'f1', 'shards': [1]},
            None,
        ])
        with patch.object(client, 'request', request):
            created = await client.add_frame()
            frames = await client.list_frames()
            frame = await client.get_frame('f1')
            await client.remove_frame('f1')

        assert [c.args for c in request.await_args_list] == [
            ('POST', '/frames'),
            ('GET', '/frames'),
            ('GET', '/frames/f1'),
            ('DELETE', '/frames/f1'),
        ]
        assert created.id == 'f1'
        assert frames[0].shard_count == 3
        assert frame.shard_count == 1

    @pytest.mark.asyncio
    async def test_list_contacts(self, client):
        """Test contact listings are paged and parsed."""
        with patch.object(client, 'request', AsyncMock(return_value=[
            {'nodeID': 'n1', 'address': '10.0.0.1', 'port': 4000,
             'lastSeen': '2016-05-01', 'protocol': '0.9.0'}
        ])) as request:
            contacts = await client.list_contacts(2, connected=True)

        request.assert_awaited_once_with(
            'GET', '/contacts', params={'page': 2, 'connected': 'true'}
        )
        assert contacts[0].node_id == 'n1'
        assert contacts[0].protocol == '0.9.0'

    @pytest.mark.asyncio
    async def test_get_contact(self, client):
        """Test a single contact is fetched by node id."""
        with patch.object(client, 'request', AsyncMock(return_value={
            'nodeID': 'n1', 'address': '10.0.0.1', 'port': 4000
        })) as request:
            contact = await client.get_contact('n1')

        request.assert_awaited_once_with('GET', '/contacts/n1')
        assert contact.url == 'http://10.0.0.1:4000'
        assert contact.last_seen is None

    @pytest.mark.asyncio
    async def test_create_mirrors(self, client):
        """Test mirror creation posts the file and redundancy."""
        with patch.object(client, 'request', AsyncMock(return_value=[['a', 'b'], ['c']])) as request:
            replicas = await client.create_mirrors('bucket', 'fid', 2)

        request.assert_awaited_once_with(
            'POST', '/buckets/bucket/mirrors', json_data={'file': 'fid', 'redundancy': 2}
        )
        assert replicas == [['a', 'b'], ['c']]

    @pytest.mark.asyncio
    @pytest.mark.parametrize('redundancy', [0, 13])
    async def test_create_mirrors_rejects_bad_redundancy(self, client, redundancy):
        """Test redundancy outside 1..12 never reaches the bridge."""
        with patch.object(client, 'request', AsyncMock()) as request:
            with pytest.raises(ValidationError, match="invalid redundancy"):
                await client.create_mirrors('bucket', 'fid', redundancy)

        request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_register_sends_password_digest(self, client):
        """Test registration never sends the plaintext password."""
        with patch.object(client, 'request', AsyncMock(return_value={'email': 'new@example.com'})) as request:
            await client.register('new@example.com', 'hunter2')

        request.assert_awaited_once_with('POST', '/users', json_data={
            'email': 'new@example.com',
            'password': sha256('hunter2').hex(),
        })

    @pytest.mark.asyncio
    async def test_reset_password(self, client):
        """Test a reset request carries the new password digest."""
        with patch.object(client, 'request', AsyncMock(return_value={})) as request:
            await client.reset_password('me@example.com', 'new-pass')

        request.assert_awaited_once_with(
            'PATCH', '/users/me@example.com', json_data={'password': sha256('new-pass').hex()}
        )


class TestTokenAttempts:
    """Test suite for how token creation and request retries combine."""

    @pytest.mark.asyncio
    async def test_token_request_not_retried_by_client(self, client, session):
        """Test a 503 on token creation fails after a single request."""
        session.request.return_value = FakeResponse(503, '{"error": "busy"}')

        with pytest.raises(BridgeError, match="busy"):
            await client.create_token('bucket', 'PUSH')

        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_broker_attempts_are_the_only_retries(self, session):
        """Test a failing bridge sees exactly one request per broker attempt."""
        client = AsyncBridgeClient(BridgeConfig(
            url='https://bridge.test/',
            user='me@example.com',
            password='secret'
        ))
        session.request.side_effect = lambda *a, **kw: FakeResponse(503, 'busy')

        with patch.object(client, '_ensure_session', AsyncMock(return_value=session)):
            with patch('storjcli.core.api.bridge_client.asyncio.sleep', AsyncMock()) as sleep:
                with pytest.raises(TokenAcquisitionError) as exc_info:
                    await TokenBroker(client).acquire('bucket', 'PUSH')

        assert session.request.call_count == TokenBroker.MAX_ATTEMPTS == 7
        assert exc_info.value.attempts == 7
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_requests_still_retried(self, client, session):
        """Test the default request path keeps its backoff retries."""
        session.request.side_effect = [
            FakeResponse(503, 'busy'),
            FakeResponse(200, '{"ok": true}'),
        ]

        assert await client.request('GET', '/buckets') == {'ok': True}
        assert session.request.call_count == 2


class TestBridgeClientShards:
    """Test suite for shard placement."""

    @pytest.mark.asyncio
    async def test_store_shard_excludes_failed_farmer(self, client):
        """Test a failed farmer is excluded from the next placement."""
        request = AsyncMock(side_effect=[farmer('A'), farmer('B')])
        send = AsyncMock(side_effect=[NetworkTransferError("refused"), None])

        with patch.object(client, 'request', request), patch.object(client, '_send_shard', send):
            pointer = await client._store_shard('frame', 0, b'data')

        assert pointer.farmer.node_id == 'B'
        assert [c.kwargs['json_data']['exclude'] for c in request.await_args_list] == [[], ['A']]

    @pytest.mark.asyncio
    async def test_store_shard_gives_up(self, client):
        """Test placement stops after the attempt limit."""
        request = AsyncMock(side_effect=lambda *a, **kw: farmer('A'))
        send = AsyncMock(side_effect=NetworkTransferError("refused"))

        with patch.object(client, 'request', request), patch.object(client, '_send_shard', send):
            with pytest.raises(NetworkTransferError, match="could not be stored"):
                await client._store_shard('frame', 0, b'data')

        assert send.await_count == AsyncBridgeClient.MAX_SHARD_ATTEMPTS

    @pytest.mark.asyncio
    async def test_store_file(self, client, tmp_path):
        """Test a file is framed, sharded and registered in the bucket."""
        path = tmp_path / 'staged.bin'
        path.write_bytes(b'x' * 100)

        async def request(method, url_path, json_data=None, params=None, headers=None):
            if (method, url_path) == ('POST', '/frames'):
                return {'id': 'frame1'}
            if method == 'PUT':
                return farmer('A')
            assert headers == {'x-token': 'tok'}
            assert json_data['frame'] == 'frame1'
            return {'id': 'fid', 'filename': json_data['filename']}

        send = AsyncMock()
        with patch.object(client, 'request', side_effect=request), patch.object(client, '_send_shard', send):
            meta = await client.store_file('bucket', Token('tok', 'bucket', 'PUSH'), path, 'photo.jpg')

        assert meta.id == 'fid'
        assert meta.filename == 'photo.jpg'
        assert meta.mimetype == 'image/jpeg'
        assert meta.size == 100
        send.assert_awaited_once()
        assert send.await_args.args[1] == b'x' * 100


class FakeStreamClient:
    """Pointer/shard source for ShardStream."""

    def __init__(self, batches):
        self._batches = list(batches)
        self.calls = []

    async def get_file_pointers(self, bucket, file_id, token, skip=0, limit=6, exclude=()):
        self.calls.append((skip, list(exclude)))
        return self._batches.pop(0) if self._batches else []

    async def read_shard(self, pointer):
        yield pointer.hash.encode()


class TestShardStream:
    """Test suite for ShardStream."""

    @pytest.mark.asyncio
    async def test_reads_batches_in_order(self, pointer):
        """Test pointers are fetched batch by batch and shards read in order."""
        client = FakeStreamClient([
            [pointer('A', 0), pointer('B', 1)],
            [pointer('C', 2)],
        ])
        stream = ShardStream(client, 'bucket', 'fid', Token('t', 'bucket', 'PULL'), exclude=['X'], length=3)

        data = b''.join([chunk async for chunk in stream])

        assert data == b'hash0hash1hash2'
        assert client.calls == [(0, ['X']), (2, ['X']), (3, ['X'])]
        assert stream.length == 3

    @pytest.mark.asyncio
    async def test_close_before_iteration(self):
        """Test closing an unread stream is safe."""
        stream = ShardStream(FakeStreamClient([]), 'bucket', 'fid', Token('t', 'bucket', 'PULL'))

        await stream.close()
