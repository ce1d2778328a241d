"""Tests for the command line interface."""
import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from storjcli.cli.main import app
from storjcli.core.crypto import sha256
from storjcli.core.exceptions import BridgeNotFoundError, ValidationError
from storjcli.core.keyring import FileKeyRing
from storjcli.core.transfer import BucketInfo, FarmerContact, FileMetadata, FrameInfo, Token, UploadReport

runner = CliRunner()


@pytest.fixture
def env(tmp_path):
    """Environment pointing the CLI at a temp data directory."""
    return {
        'STORJ_DATADIR': str(tmp_path / 'data'),
        'STORJ_KEYPASS': 'kp',
        'STORJ_BRIDGE': None,
        'STORJ_BRIDGE_USER': 'me@example.com',
        'STORJ_BRIDGE_PASS': 'pw',
    }


@pytest.fixture
def storj():
    """StorjClient replaced by an async mock."""
    client = AsyncMock()
    client.__aenter__.return_value = client
    with patch('storjcli.cli.main.StorjClient', return_value=client) as factory:
        client.factory = factory
        yield client


def invoke(args, env, **kwargs):
    return runner.invoke(app, args, env=env, **kwargs)


class TestAccountCommands:
    """Test suite for login/logout/get-info."""

    def test_login_saves_credentials(self, storj, env, tmp_path):
        """Test login verifies the credentials then saves them."""
        storj.list_buckets.return_value = []

        result = invoke(['login', '-e', 'new@example.com', '-p', 'secret'], env)

        assert result.exit_code == 0
        assert "Logged in as new@example.com" in result.output
        saved = json.loads((tmp_path / 'data' / 'credentials.json').read_text())
        assert saved == {'user': 'new@example.com', 'password_hash': sha256('secret').hex()}

    def test_login_rejected(self, storj, env, tmp_path):
        """Test bad credentials aren't saved."""
        storj.list_buckets.side_effect = BridgeNotFoundError("User not found", status=404)

        result = invoke(['login', '-e', 'x', '-p', 'y'], env)

        assert result.exit_code == 1
        assert not (tmp_path / 'data' / 'credentials.json').exists()

    def test_logout_without_credentials(self, env):
        """Test logout when nothing was saved."""
        result = invoke(['logout'], env)

        assert result.exit_code == 0
        assert "No saved credentials" in result.output

    def test_get_info(self, storj, env):
        """Test bridge info is printed."""
        storj.get_info.return_value = {'info': {'title': 'Storj Bridge', 'version': '5.0.0'}, 'host': 'api'}

        result = invoke(['get-info'], env)

        assert result.exit_code == 0
        assert "Storj Bridge" in result.output
        assert "5.0.0" in result.output

    def test_url_option(self, storj, env):
        """Test --url selects the bridge."""
        storj.get_info.return_value = {}

        invoke(['--url', 'https://bridge.test', 'get-info'], env)

        assert storj.factory.call_args[0][0].url == 'https://bridge.test'

    def test_register(self, storj, env):
        """Test registration prompts are skipped when options are given."""
        result = invoke(['register', '-e', 'new@example.com', '-p', 'secret'], env)

        assert result.exit_code == 0
        storj.register.assert_awaited_once_with('new@example.com', 'secret')
        assert "check your email" in result.output

    def test_register_prompts_for_password(self, storj, env):
        """Test the password is asked for twice when not given."""
        result = invoke(['register', '-e', 'new@example.com'], env, input='secret\nsecret\n')

        assert result.exit_code == 0
        storj.register.assert_awaited_once_with('new@example.com', 'secret')

    def test_reset_password(self, storj, env):
        """Test a password reset is requested for the email."""
        result = invoke(['reset-password', 'me@example.com', '-p', 'new-pass'], env)

        assert result.exit_code == 0
        storj.reset_password.assert_awaited_once_with('me@example.com', 'new-pass')


class TestBucketCommands:
    """Test suite for bucket commands."""

    def test_list_buckets(self, storj, env):
        """Test buckets are listed."""
        storj.list_buckets.return_value = [BucketInfo(id='b1', name='photos')]

        result = invoke(['list-buckets'], env)

        assert result.exit_code == 0
        assert 'photos' in result.output

    def test_list_buckets_empty(self, storj, env):
        """Test an empty account."""
        storj.list_buckets.return_value = []

        result = invoke(['list-buckets'], env)

        assert "not created any buckets" in result.output

    def test_get_bucket_missing(self, storj, env):
        """Test bridge errors exit non-zero with the message."""
        storj.get_bucket.side_effect = BridgeNotFoundError("Bucket not found", status=404)

        result = invoke(['get-bucket', 'nope'], env)

        assert result.exit_code == 1
        assert "Bucket not found" in result.output

    def test_add_bucket(self, storj, env):
        """Test bucket creation."""
        storj.add_bucket.return_value = BucketInfo(id='b2', name='docs')

        result = invoke(['add-bucket', 'docs'], env)

        assert result.exit_code == 0
        storj.add_bucket.assert_awaited_once_with('docs')

    def test_remove_bucket_aborted(self, storj, env):
        """Test declining the confirmation removes nothing."""
        result = invoke(['remove-bucket', 'b1'], env, input='n\n')

        assert result.exit_code == 0
        storj.remove_bucket.assert_not_awaited()

    def test_remove_bucket_forced(self, storj, env):
        """Test --force skips the confirmation."""
        result = invoke(['remove-bucket', 'b1', '--force'], env)

        assert result.exit_code == 0
        storj.remove_bucket.assert_awaited_once_with('b1')

    def test_update_bucket(self, storj, env):
        """Test optional name and limits are forwarded."""
        storj.update_bucket.return_value = BucketInfo(id='b1', name='renamed', storage=10, transfer=20)

        result = invoke(['update-bucket', 'b1', 'renamed', '10', '20'], env)

        assert result.exit_code == 0
        storj.update_bucket.assert_awaited_once_with('b1', name='renamed', storage=10, transfer=20)
        assert "Name: renamed" in result.output

    def test_update_bucket_name_only(self, storj, env):
        """Test omitted limits stay unset."""
        storj.update_bucket.return_value = BucketInfo(id='b1', name='renamed')

        invoke(['update-bucket', 'b1', 'renamed'], env)

        storj.update_bucket.assert_awaited_once_with('b1', name='renamed', storage=None, transfer=None)


class TestFrameCommands:
    """Test suite for staging frame commands."""

    def test_add_frame(self, storj, env):
        """Test the new frame id is printed."""
        storj.add_frame.return_value = FrameInfo(id='f1', created='2016-05-01')

        result = invoke(['add-frame'], env)

        assert result.exit_code == 0
        assert "ID: f1, Created: 2016-05-01" in result.output

    def test_list_frames(self, storj, env):
        """Test frames are listed with their shard counts."""
        storj.list_frames.return_value = [FrameInfo(id='f1', shard_count=3)]

        result = invoke(['list-frames'], env)

        assert result.exit_code == 0
        assert 'f1' in result.output

    def test_list_frames_empty(self, storj, env):
        """Test an empty frame list is reported."""
        storj.list_frames.return_value = []

        result = invoke(['list-frames'], env)

        assert "no frames" in result.output

    def test_get_frame(self, storj, env):
        """Test one frame is shown."""
        storj.get_frame.return_value = FrameInfo(id='f1', created='2016', shard_count=5)

        result = invoke(['get-frame', 'f1'], env)

        assert result.exit_code == 0
        storj.get_frame.assert_awaited_once_with('f1')
        assert "Shards: 5" in result.output

    def test_remove_frame_aborted(self, storj, env):
        """Test declining the confirmation keeps the frame."""
        result = invoke(['remove-frame', 'f1'], env, input='n\n')

        assert result.exit_code == 0
        storj.remove_frame.assert_not_awaited()

    def test_remove_frame_forced(self, storj, env):
        """Test --force removes without asking."""
        result = invoke(['remove-frame', 'f1', '-f'], env)

        assert result.exit_code == 0
        storj.remove_frame.assert_awaited_once_with('f1')


class TestFileCommands:
    """Test suite for file commands."""

    def test_list_files(self, storj, env):
        """Test files are listed."""
        storj.list_files.return_value = [FileMetadata('a.txt', 'text/plain', 5, 'fid')]

        result = invoke(['list-files', 'b1'], env)

        assert result.exit_code == 0
        assert 'a.txt' in result.output

    def test_get_file_info(self, storj, env):
        """Test file metadata is printed."""
        storj.get_file_info.return_value = FileMetadata('a.txt', 'text/plain', 5, 'fid')

        result = invoke(['get-file-info', 'b1', 'fid'], env)

        assert "Name: a.txt, Type: text/plain, Size: 5 bytes, ID: fid" in result.output

    def test_upload_file(self, storj, env, tmp_path):
        """Test uploads use the key-ring and the concurrency options."""
        storj.upload.return_value = UploadReport(uploaded=[FileMetadata('a.txt', 'text/plain', 1, 'fid')])

        result = invoke(['upload-file', 'b1', 'a.txt', 'b.txt', '-c', '4', '-C', '2'], env)

        assert result.exit_code == 0
        assert "1 file(s) uploaded" in result.output
        args, kwargs = storj.upload.await_args
        assert args == ('b1', ['a.txt', 'b.txt'])
        assert kwargs['file_concurrency'] == 2
        assert kwargs['shard_concurrency'] == 4
        assert isinstance(storj.factory.call_args[0][1], FileKeyRing)

    def test_download_file(self, storj, env, tmp_path):
        """Test downloads pass the excluded peers."""
        storj.download.return_value = tmp_path / 'a.txt'

        result = invoke(['download-file', 'b1', 'fid', str(tmp_path), '-x', 'n1,n2'], env)

        assert result.exit_code == 0
        assert "File downloaded and written to" in result.output
        args, kwargs = storj.download.await_args
        assert args == ('b1', 'fid', str(tmp_path))
        assert list(kwargs['excluded_peers']) == ['n1', 'n2']

    def test_stream_file(self, storj, env):
        """Test streaming goes to stdout with the excluded peers."""
        result = invoke(['stream-file', 'b1', 'fid', '-x', 'n1'], env)

        assert result.exit_code == 0
        args, kwargs = storj.stream.await_args
        assert args[:2] == ('b1', 'fid')
        assert list(kwargs['excluded_peers']) == ['n1']

    def test_remove_file_forced(self, storj, env):
        """Test file removal."""
        result = invoke(['remove-file', 'b1', 'fid', '-f'], env)

        assert result.exit_code == 0
        storj.remove_file.assert_awaited_once_with('b1', 'fid')

    def test_create_token(self, storj, env):
        """Test the operation is upper-cased."""
        storj.create_token.return_value = Token('tok', 'b1', 'PULL')

        result = invoke(['create-token', 'b1', 'pull'], env)

        assert result.exit_code == 0
        storj.create_token.assert_awaited_once_with('b1', 'PULL')
        assert "Token: tok" in result.output

    def test_create_token_invalid_operation(self, storj, env):
        """Test unknown operations are rejected."""
        result = invoke(['create-token', 'b1', 'SIDEWAYS'], env)

        assert result.exit_code == 1
        storj.create_token.assert_not_awaited()

    def test_get_pointers(self, storj, env, pointer):
        """Test pointer listing options."""
        storj.get_pointers.return_value = [pointer('farmer-a')]

        result = invoke(['get-pointers', 'b1', 'fid', '-s', '6', '-n', '3', '-x', 'n1'], env)

        assert result.exit_code == 0
        assert 'farmer-a' in result.output
        storj.get_pointers.assert_awaited_once_with('b1', 'fid', skip=6, limit=3, exclude=['n1'])

    def test_create_mirrors(self, storj, env):
        """Test each shard's mirror count is printed."""
        storj.create_mirrors.return_value = [['n1', 'n2'], ['n3']]

        result = invoke(['create-mirrors', 'b1', 'fid', '-r', '2'], env)

        assert result.exit_code == 0
        storj.create_mirrors.assert_awaited_once_with('b1', 'fid', 2)
        assert "Shard 0 establishing mirrors to 2 nodes" in result.output
        assert "Shard 1 establishing mirrors to 1 nodes" in result.output

    def test_create_mirrors_invalid_redundancy(self, storj, env):
        """Test a rejected redundancy exits non-zero with the message."""
        storj.create_mirrors.side_effect = ValidationError("13 is an invalid redundancy value (1-12)")

        result = invoke(['create-mirrors', 'b1', 'fid', '-r', '13'], env)

        assert result.exit_code == 1
        assert "invalid redundancy" in result.output


class TestContactCommands:
    """Test suite for contact commands."""

    def test_list_contacts(self, storj, env):
        """Test the page and connected filter are forwarded."""
        storj.list_contacts.return_value = [FarmerContact('n1', '10.0.0.1', 4000)]

        result = invoke(['list-contacts', '2', '--connected'], env)

        assert result.exit_code == 0
        storj.list_contacts.assert_awaited_once_with(2, connected=True)
        assert 'n1' in result.output

    def test_list_contacts_empty(self, storj, env):
        """Test an empty page is reported."""
        storj.list_contacts.return_value = []

        result = invoke(['list-contacts'], env)

        storj.list_contacts.assert_awaited_once_with(1, connected=False)
        assert "no contacts to show" in result.output

    def test_get_contact(self, storj, env):
        """Test one contact's details are printed."""
        storj.get_contact.return_value = FarmerContact(
            'n1', '10.0.0.1', 4000, last_seen='2016-05-01', protocol='0.9.0'
        )

        result = invoke(['get-contact', 'n1'], env)

        assert result.exit_code == 0
        assert "Contact:   10.0.0.1:4000" in result.output
        assert "Last Seen: 2016-05-01" in result.output
        assert "Protocol:  0.9.0" in result.output


class TestKeyRingCommands:
    """Test suite for key-ring commands."""

    def test_export_keyring(self, env, tmp_path):
        """Test the key-ring is copied into the folder."""
        target = tmp_path / 'backup'
        target.mkdir()

        result = invoke(['export-keyring', str(target)], env)

        assert result.exit_code == 0
        assert len(list(target.iterdir())) == 1

    def test_change_keyring(self, env, tmp_path):
        """Test the key-ring is re-encrypted under the new pass-phrase."""
        result = invoke(['change-keyring', '--new-passphrase', 'new'], env)

        assert result.exit_code == 0
        FileKeyRing.open(Path(env['STORJ_DATADIR']) / 'keyring.json', 'new')

    def test_import_keyring(self, env, tmp_path, secret):
        """Test entries from another key-ring are merged."""
        other = FileKeyRing.open(tmp_path / 'other.json', 'other')
        other.set('fid', secret)

        result = invoke(['import-keyring', str(tmp_path / 'other.json'), '-p', 'other'], env)

        assert result.exit_code == 0
        assert "Imported 1" in result.output

    def test_wrong_keypass(self, env):
        """Test a wrong pass-phrase exits non-zero."""
        invoke(['reset-keyring', '-f'], env)
        env['STORJ_KEYPASS'] = 'wrong'

        result = invoke(['reset-keyring', '-f'], env)

        assert result.exit_code == 1
        assert "bad password" in result.output
