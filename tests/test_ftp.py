import subprocess

import pytest
from unittest.mock import MagicMock

from servctl.config import FtpConfig
from servctl.ftp import FtpBackend, FtpError, VsftpdConfig, run_command


def proc(rc=0, out=""):
    return subprocess.CompletedProcess([], rc, out, "")


@pytest.fixture
def conf_file(tmp_path):
    path = tmp_path / "vsftpd.conf"
    path.write_text(
        "# sample\n"
        "listen=YES\n"
        "anonymous_enable=YES\n"
        "anon_root=/srv/ftp\n"
        "#write_enable=YES\n"
        "listen_port=21\n"
        "listen_port=2121\n"
        "garbage line\n"
    )
    return path


@pytest.fixture
def runner():
    r = MagicMock(return_value=proc())
    return r


@pytest.fixture
def ftp(tmp_path, conf_file, runner, mocker):
    mocker.patch("servctl.ftp.find_tool", side_effect=lambda name: f"/usr/sbin/{name}")
    cfg = FtpConfig(config_path=str(conf_file), default_root=str(tmp_path / "root"))
    return FtpBackend(cfg, runner=runner)


class TestVsftpdConfig:
    def test_entries_skip_comments_and_malformed(self, conf_file):
        keys = [e.key for e in VsftpdConfig(str(conf_file)).entries()]
        assert keys == ["listen", "anonymous_enable", "anon_root", "listen_port", "listen_port"]

    def test_last_assignment_wins(self, conf_file):
        assert VsftpdConfig(str(conf_file)).get("listen_port") == "2121"
        assert VsftpdConfig(str(conf_file)).get("missing", "x") == "x"

    def test_set_rewrites_existing(self, conf_file):
        cfg = VsftpdConfig(str(conf_file))
        cfg.set("listen_port", "2200")
        assert cfg.get("listen_port") == "2200"
        assert conf_file.read_text().count("listen_port=2200") == 2

    def test_set_uncomments(self, conf_file):
        cfg = VsftpdConfig(str(conf_file))
        cfg.set("write_enable", "NO")
        text = conf_file.read_text()
        assert "#write_enable" not in text
        assert "write_enable=NO" in text

    def test_set_appends(self, conf_file):
        cfg = VsftpdConfig(str(conf_file))
        cfg.set("pasv_enable", "YES")
        assert conf_file.read_text().splitlines()[-1] == "pasv_enable=YES"

    def test_backup(self, conf_file):
        dest = VsftpdConfig(str(conf_file)).backup()
        assert dest.read_text() == conf_file.read_text()
        assert dest.name.startswith("vsftpd.conf.backup.")

    def test_missing_file(self, tmp_path):
        cfg = VsftpdConfig(str(tmp_path / "none.conf"))
        assert not cfg.exists()
        assert cfg.entries() == []
        assert cfg.backup() is None


def test_run_command_missing_executable():
    res = run_command(["servctl-no-such-binary-xyz"])
    assert res.returncode == 127


class TestService:
    def test_start_when_stopped(self, ftp, runner):
        runner.side_effect = [proc(3), proc(), proc(), proc(0)]
        res = ftp.start()
        assert res.ok and res.message == "FTP server started"
        runner.assert_any_call(["systemctl", "start", "vsftpd"])

    def test_start_when_running_is_noop(self, ftp, runner):
        res = ftp.start()
        assert res.ok
        assert res.applied == 0
        assert res.message == "Already running"

    def test_stop_when_stopped(self, ftp, runner):
        runner.return_value = proc(3)
        assert ftp.stop().message == "Already stopped"

    def test_not_installed(self, ftp, mocker):
        mocker.patch("servctl.ftp.find_tool", return_value=None)
        with pytest.raises(FtpError):
            ftp.start()
        assert ftp.status().installed is False


class TestSettings:
    def test_set_port_validates(self, ftp):
        for bad in ("0", "65536", "abc", ""):
            with pytest.raises(FtpError):
                ftp.set_port(bad)

    def test_set_port_writes_and_restarts(self, ftp, runner):
        res = ftp.set_port("2222")
        assert res.ok
        assert ftp.port == "2222"
        runner.assert_any_call(["systemctl", "restart", "vsftpd"])

    def test_set_root_missing_directory(self, ftp, tmp_path):
        with pytest.raises(FtpError):
            ftp.set_root(str(tmp_path / "nowhere"))

    def test_set_root_create(self, ftp, tmp_path, runner):
        runner.return_value = proc(3)
        new_root = tmp_path / "pub"
        res = ftp.set_root(str(new_root), create=True)
        assert res.ok
        assert new_root.is_dir()
        assert ftp.root == str(new_root)

    def test_disable_uploads(self, ftp, conf_file, runner):
        runner.return_value = proc(3)
        assert ftp.disable_uploads().ok
        text = conf_file.read_text()
        for flag in ("write_enable=NO", "anon_upload_enable=NO", "anon_mkdir_write_enable=NO"):
            assert flag in text

    def test_configure_writes_template(self, ftp, conf_file, tmp_path, runner, mocker):
        mocker.patch("servctl.ftp.os.makedirs")
        mocker.patch("servctl.ftp.os.chmod")
        runner.side_effect = lambda cmd, **kw: proc(0, "192.168.1.5 fe80::1") if cmd[0] == "hostname" else proc(3)
        res = ftp.configure(str(tmp_path / "pub"))
        assert res.ok
        cfg = VsftpdConfig(str(conf_file))
        assert cfg.get("anon_root") == str(tmp_path / "pub")
        assert cfg.get("pasv_address") == "192.168.1.5"
        assert cfg.get("pasv_min_port") == "40000"
        assert list(tmp_path.glob("vsftpd.conf.backup.*"))


class TestStatus:
    def test_status_fields(self, ftp, runner, tmp_path):
        runner.side_effect = lambda cmd, **kw: proc(0, "10.0.0.2 172.17.0.1 ::1") if cmd[0] == "hostname" else proc(0)
        st = ftp.status()
        assert st.installed and st.running
        assert st.port == "2121"
        assert st.root == "/srv/ftp"
        assert st.anonymous == "YES"
        assert st.addresses == ("10.0.0.2", "172.17.0.1")
        assert st.passive_range == "40000:40100"

    def test_root_contents(self, ftp, tmp_path):
        root = tmp_path / "pub"
        (root / "dir").mkdir(parents=True)
        (root / "file.txt").write_text("x")
        ftp.config.set("anon_root", str(root))
        assert ftp.root_contents() == (1, 1)

    def test_logs_fallback(self, ftp, runner, mocker):
        mocker.patch("servctl.ftp.find_tool", return_value=None)
        ftp.cfg.log_file = "/nonexistent/vsftpd.log"
        assert ftp.logs() == ["No logs available"]


class TestFirewall:
    def test_no_firewall(self, ftp, mocker):
        mocker.patch("servctl.ftp.find_tool", return_value=None)
        res = ftp.open_firewall()
        assert res.ok and res.applied == 0

    def test_ufw_open(self, ftp, runner):
        runner.side_effect = lambda cmd, **kw: proc(0, "Status: active\n") if cmd == ["ufw", "status"] else proc(0)
        res = ftp.open_firewall()
        assert res.ok
        runner.assert_any_call(["ufw", "allow", "2121/tcp", "comment", "FTP control"])
        runner.assert_any_call(["ufw", "allow", "40000:40100/tcp", "comment", "FTP passive mode"])


def test_diagnose_reports_eight_checks(ftp, runner, mocker):
    mocker.patch("servctl.ftp.find_tool", side_effect=lambda name: "/usr/sbin/vsftpd" if name == "vsftpd" else None)
    runner.side_effect = lambda cmd, **kw: proc(3)
    checks = ftp.diagnose()
    assert [c.name for c in checks] == [
        "Installation", "Service Status", "Configuration", "FTP Root Directory",
        "Uploads Directory", "Passive Mode", "Port Status", "Firewall",
    ]
    assert checks[0].ok
    assert not checks[1].ok


def test_connection_test_failure(ftp, mocker):
    ftp_cls = mocker.patch("servctl.ftp.ftplib.FTP")
    ftp_cls.return_value.connect.side_effect = ConnectionRefusedError("refused")
    results = ftp.test_connection()
    assert len(results) == 1
    assert results[0].name == "Basic connection"
    assert not results[0].ok
