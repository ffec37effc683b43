"""Tests for smsync CLI commands."""

import pytest
from click.testing import CliRunner

from smsync.cli import main
from smsync.config import load_config, save_config
from smsync.provider import SqliteProvider


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Create an initialized project in a temp directory."""
    monkeypatch.delenv("SMSYNC_ROOT", raising=False)
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()
    result = runner.invoke(main, ["init"])
    assert result.exit_code == 0
    assert (tmp_path / ".smsync" / "config.yaml").exists()
    return tmp_path


def thread_of(project, address="+15551234") -> int:
    with SqliteProvider(project / ".smsync" / "provider.db") as provider:
        return provider.thread_id_for([address])


class TestInit:
    def test_init_default(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(main, ["init"])
        assert result.exit_code == 0
        assert "Initialized" in result.output
        assert (tmp_path / ".smsync" / "provider.db").exists()
        assert (tmp_path / ".smsync" / "state.db").exists()
        config = (tmp_path / ".smsync" / "config.yaml").read_text()
        assert "type: loopback" in config

    def test_init_http(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(main, ["init", "-t", "http", "-u", "https://gw.example.com/send"])
        assert result.exit_code == 0
        config = load_config(tmp_path)
        assert config.transport.type == "http"
        assert config.transport.url == "https://gw.example.com/send"

    def test_init_http_needs_url(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(main, ["init", "-t", "http"])
        assert result.exit_code == 2
        assert "--url" in result.output

    def test_init_provider_path(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(main, ["init", "-p", "backup/mmssms.db"])
        assert result.exit_code == 0
        assert (tmp_path / "backup" / "mmssms.db").exists()

    def test_init_already_exists(self, runner, project):
        result = runner.invoke(main, ["init"])
        assert result.exit_code == 0
        assert "Already initialized" in result.output

    def test_requires_init(self, runner, tmp_path, monkeypatch):
        monkeypatch.delenv("SMSYNC_ROOT", raising=False)
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(main, ["ls"])
        assert result.exit_code == 1
        assert "smsync init" in result.output


class TestConversations:
    def test_ls_empty(self, runner, project):
        result = runner.invoke(main, ["ls"])
        assert result.exit_code == 0
        assert "No conversations." in result.output

    def test_receive_then_ls(self, runner, project):
        result = runner.invoke(main, ["receive", "+1 555 1234", "see you at 8"])
        assert result.exit_code == 0
        assert "Received sms:1" in result.output
        result = runner.invoke(main, ["ls"])
        assert result.exit_code == 0
        assert "+15551234" in result.output
        assert "see you at 8" in result.output

    def test_sync(self, runner, project):
        runner.invoke(main, ["receive", "+15551234", "one"])
        runner.invoke(main, ["receive", "+15559999", "two"])
        result = runner.invoke(main, ["sync"])
        assert result.exit_code == 0
        assert "Synced 2 conversations" in result.output

    def test_ls_query(self, runner, project):
        runner.invoke(main, ["receive", "+15551234", "lunch?"])
        runner.invoke(main, ["receive", "+15559999", "meeting moved"])
        result = runner.invoke(main, ["ls", "-q", "lunch"])
        assert "lunch?" in result.output
        assert "meeting" not in result.output

    def test_show(self, runner, project):
        runner.invoke(main, ["receive", "+15551234", "hello there"])
        thread_id = thread_of(project)
        result = runner.invoke(main, ["show", str(thread_id)])
        assert result.exit_code == 0
        assert "sms:1" in result.output
        assert "hello there" in result.output
        assert "[received]" in result.output

    def test_show_paging_hint(self, runner, project):
        for i in range(3):
            runner.invoke(main, ["receive", "+15551234", f"msg {i}"])
        thread_id = thread_of(project)
        result = runner.invoke(main, ["show", str(thread_id), "-n", "2"])
        assert f"smsync show {thread_id} -o 2" in result.output
        result = runner.invoke(main, ["show", str(thread_id), "-n", "2", "-o", "2"])
        assert result.output.count("msg ") == 1

    def test_show_empty(self, runner, project):
        result = runner.invoke(main, ["show", "42"])
        assert result.exit_code == 0
        assert "No messages in thread 42" in result.output

    def test_read(self, runner, project):
        runner.invoke(main, ["receive", "+15551234", "hi"])
        thread_id = thread_of(project)
        result = runner.invoke(main, ["read", str(thread_id)])
        assert result.exit_code == 0
        assert f"Marked 1 messages read in thread {thread_id}" in result.output
        result = runner.invoke(main, ["read", "-u", str(thread_id)])
        assert "unread" in result.output

    def test_pin(self, runner, project):
        result = runner.invoke(main, ["pin", "3"])
        assert result.exit_code == 0
        assert "Pinned thread 3" in result.output
        result = runner.invoke(main, ["pin", "-u", "3"])
        assert "Unpinned thread 3" in result.output

    def test_rm(self, runner, project):
        runner.invoke(main, ["receive", "+15551234", "hi"])
        thread_id = thread_of(project)
        result = runner.invoke(main, ["rm", "-y", str(thread_id)])
        assert result.exit_code == 0
        assert f"Deleted 1 messages from thread {thread_id}" in result.output
        result = runner.invoke(main, ["ls"])
        assert "No conversations." in result.output

    def test_rm_aborts_without_confirmation(self, runner, project):
        runner.invoke(main, ["receive", "+15551234", "hi"])
        result = runner.invoke(main, ["rm", str(thread_of(project))], input="n\n")
        assert result.exit_code == 1
        result = runner.invoke(main, ["ls"])
        assert "+15551234" in result.output


class TestSend:
    def test_send(self, runner, project):
        result = runner.invoke(main, ["send", "+15551234", "on my way"])
        assert result.exit_code == 0
        assert "sms:1 sent" in result.output

    def test_send_group(self, runner, project):
        result = runner.invoke(main, ["send", "+15551234;+15559999", "dinner?"])
        assert result.exit_code == 0
        assert "mms:1 sent" in result.output

    def test_send_attachment(self, runner, project):
        result = runner.invoke(main, ["send", "+15551234", "-a", "photo.jpg"])
        assert result.exit_code == 0
        assert "mms:1 sent" in result.output

    def test_send_empty(self, runner, project):
        result = runner.invoke(main, ["send", "+15551234"])
        assert result.exit_code == 1
        assert "empty" in result.output.lower()

    def test_failed_then_resend(self, runner, project):
        config = load_config(project)
        config.transport.fail = True
        save_config(config, project)
        result = runner.invoke(main, ["send", "+15551234", "hello"])
        assert "sms:1 failed" in result.output

        config.transport.fail = False
        save_config(config, project)
        result = runner.invoke(main, ["resend", "1"])
        assert result.exit_code == 0
        assert "sms:2 sent" in result.output

        result = runner.invoke(main, ["show", str(thread_of(project))])
        assert "sms:1 " not in result.output
        assert "sms:2 " in result.output

    def test_resend_not_failed(self, runner, project):
        runner.invoke(main, ["send", "+15551234", "hello"])
        result = runner.invoke(main, ["resend", "1"])
        assert result.exit_code == 1


class TestBlock:
    def test_block_ls_empty(self, runner, project):
        result = runner.invoke(main, ["block", "ls"])
        assert result.exit_code == 0
        assert "No blocked numbers." in result.output

    def test_block_add_rm(self, runner, project):
        result = runner.invoke(main, ["block", "add", "+1 (555) 123-4567", "+15557777"])
        assert result.exit_code == 0
        assert "Blocked 2 new numbers" in result.output
        result = runner.invoke(main, ["block", "ls"])
        assert result.output.split() == ["+15551234567", "+15557777"]
        result = runner.invoke(main, ["block", "rm", "+15557777"])
        assert "Unblocked +15557777" in result.output

    def test_block_hides_conversation(self, runner, project):
        runner.invoke(main, ["receive", "+15551234", "spam"])
        runner.invoke(main, ["block", "add", "+15551234"])
        result = runner.invoke(main, ["ls", "-s"])
        assert "No conversations." in result.output

    def test_block_thread(self, runner, project):
        runner.invoke(main, ["receive", "+15551234", "spam"])
        runner.invoke(main, ["sync"])
        result = runner.invoke(main, ["block", "add", "-t", str(thread_of(project))])
        assert result.exit_code == 0
        assert "Blocked 1 new number" in result.output

    def test_block_unknown_thread(self, runner, project):
        result = runner.invoke(main, ["block", "add", "-t", "99"])
        assert result.exit_code == 1
        assert "No conversation 99" in result.output

    def test_block_import(self, runner, project):
        path = project / "carrier.txt"
        path.write_text("# list\n+15550001\n+15550002\n")
        result = runner.invoke(main, ["block", "import", str(path)])
        assert result.exit_code == 0
        assert "Imported 2 new numbers" in result.output


class TestSchedule:
    def test_schedule_add_ls_cancel(self, runner, project):
        result = runner.invoke(main, ["schedule", "add", "2h", "+15551234", "call me"])
        assert result.exit_code == 0
        assert "Scheduled #1" in result.output

        result = runner.invoke(main, ["schedule", "ls"])
        assert "call me" in result.output
        assert "pending" in result.output

        result = runner.invoke(main, ["schedule", "cancel", "1"])
        assert result.exit_code == 0
        assert "Cancelled #1" in result.output

        result = runner.invoke(main, ["schedule", "ls"])
        assert "No scheduled messages." in result.output
        result = runner.invoke(main, ["schedule", "ls", "-a"])
        assert "cancelled" in result.output

    def test_cancel_twice(self, runner, project):
        runner.invoke(main, ["schedule", "add", "1d", "+15551234", "x"])
        runner.invoke(main, ["schedule", "cancel", "1"])
        result = runner.invoke(main, ["schedule", "cancel", "1"])
        assert result.exit_code == 1
        assert "not pending" in result.output

    def test_bad_when(self, runner, project):
        result = runner.invoke(main, ["schedule", "add", "soon", "+15551234", "x"])
        assert result.exit_code == 2

    def test_run_due(self, runner, project):
        runner.invoke(main, ["schedule", "add", "2000-01-01T00:00", "+15551234", "late"])
        result = runner.invoke(main, ["schedule", "run"])
        assert result.exit_code == 0
        assert "Sent 0 due messages" in result.output  # already sent on add
        result = runner.invoke(main, ["schedule", "ls", "-a"])
        assert "sent" in result.output


class TestHelpOnNoArgs:
    """Commands with required args show help when called bare."""

    def test_show_no_args(self, runner, project):
        result = runner.invoke(main, ["show"])
        assert result.exit_code == 2
        assert "Usage:" in result.output
        assert "THREAD_ID" in result.output

    def test_send_no_args(self, runner, project):
        result = runner.invoke(main, ["send"])
        assert result.exit_code == 2
        assert "Usage:" in result.output

    def test_block_add_no_args(self, runner, project):
        result = runner.invoke(main, ["block", "add"])
        assert result.exit_code == 2
        assert "Usage:" in result.output


class TestAliases:
    def test_init_alias(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(main, ["i"])
        assert result.exit_code == 0
        assert "Initialized" in result.output

    def test_send_alias(self, runner, project):
        result = runner.invoke(main, ["s", "+15551234", "hi"])
        assert result.exit_code == 0
        assert "sent" in result.output

    def test_block_aliases(self, runner, project):
        runner.invoke(main, ["b", "a", "+15551234"])
        result = runner.invoke(main, ["b", "l"])
        assert "+15551234" in result.output

    def test_aliases_in_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert "send (s)" in result.output
        assert "schedule (sc)" in result.output
