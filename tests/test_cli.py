import pytest
from unittest.mock import MagicMock

from servctl import cli
from servctl.backend import ManagerUnavailable, ResourceNotFound
from servctl.ftp import FtpError
from servctl.model import (
    ContainerInfo, FtpStatus, MutationResult, ResourceKind, StepResult, VolumeInfo, VolumeUsage,
)


@pytest.fixture
def backend(mocker):
    b = MagicMock()
    b.mutate.return_value = MutationResult.success()
    mocker.patch("servctl.cli.DockerBackend", return_value=b)
    return b


@pytest.fixture
def answer(mocker):
    """Answer every confirmation with the given text."""
    def _set(text):
        return mocker.patch.object(cli.console, "input", return_value=text)
    return _set


class TestConfirm:
    @pytest.mark.parametrize("text,expected", [
        ("y", True), ("Y", True), ("yes", False), ("n", False), ("", False),
    ])
    def test_only_y_accepts(self, answer, text, expected):
        answer(text)
        assert cli.confirm("Continue?") is expected

    def test_skip(self, answer):
        prompt = answer("n")
        assert cli.confirm("Continue?", skip=True) is True
        prompt.assert_not_called()


class TestDockerCommands:
    def test_missing_target(self, backend):
        assert cli.docker_main(["rm"]) == 1
        backend.mutate.assert_not_called()

    def test_declined_removal_exits_zero(self, backend, answer):
        answer("n")
        assert cli.docker_main(["rm", "web"]) == 0
        backend.mutate.assert_not_called()

    def test_yes_flag_skips_prompt(self, backend, answer):
        prompt = answer("n")
        assert cli.docker_main(["-y", "rmi", "nginx"]) == 0
        prompt.assert_not_called()
        backend.mutate.assert_called_once_with(ResourceKind.IMAGES, "remove", "nginx")

    def test_failed_mutation_exits_one(self, backend, capsys):
        backend.mutate.return_value = MutationResult.failure("not found")
        assert cli.docker_main(["start", "ghost"]) == 1
        assert "not found" in capsys.readouterr().err

    def test_start_runs_without_prompt(self, backend, answer):
        prompt = answer("n")
        assert cli.docker_main(["start", "web"]) == 0
        prompt.assert_not_called()

    def test_manager_unavailable(self, mocker, capsys):
        mocker.patch("servctl.cli.DockerBackend", side_effect=ManagerUnavailable("no socket"))
        assert cli.docker_main(["list"]) == 1
        assert "Docker daemon is not running" in capsys.readouterr().err

    def test_inspect_not_found(self, backend):
        backend.inspect.side_effect = ResourceNotFound("Container 'x' not found")
        assert cli.docker_main(["inspect", "x"]) == 1

    def test_list_alias(self, backend, capsys):
        backend.list_containers.return_value = [
            ContainerInfo("abc", "abc", "web", "nginx", "Up 1 hour", "running"),
        ]
        assert cli.docker_main(["ls"]) == 0
        out = capsys.readouterr().out
        assert "web" in out
        assert "1 running / 1 total" in out

    def test_volumes_show_usage(self, backend, capsys):
        backend.list_volumes.return_value = [VolumeInfo("data", "local"), VolumeInfo("spare", "local")]
        used = VolumeUsage()
        used.add("db", "postgres")
        backend.usage_index.return_value = {"data": used, "spare": VolumeUsage()}
        assert cli.docker_main(["volumes"]) == 0
        out = capsys.readouterr().out
        assert "(unused)" in out
        assert "postgres" in out
        assert "1 unused" in out

    def test_stop_all_nothing_running(self, backend, capsys):
        backend.mutate.return_value = MutationResult(True, "No running containers")
        assert cli.docker_main(["-y", "stop-all"]) == 0
        assert "No running containers" in capsys.readouterr().out

    def test_bulk_partial_failure(self, backend):
        backend.mutate.return_value = MutationResult(False, "in use", applied=2, failed=1)
        assert cli.docker_main(["-y", "rmv-force"]) == 1

    def test_nuke_second_prompt_declined(self, backend, mocker):
        mocker.patch.object(cli.console, "input", side_effect=["y", "n"])
        teardown = mocker.patch("servctl.cli.run_teardown")
        assert cli.docker_main(["nuke"]) == 0
        teardown.assert_not_called()

    def test_nuke_with_yes(self, backend, mocker):
        teardown = mocker.patch("servctl.cli.run_teardown",
                                return_value=[StepResult("Stopping all containers", True)])
        assert cli.docker_main(["--yes", "nuke"]) == 0
        teardown.assert_called_once()

    def test_yes_flag_after_subcommand(self, backend, answer):
        prompt = answer("n")
        assert cli.docker_main(["rm", "web", "-y"]) == 0
        prompt.assert_not_called()
        backend.mutate.assert_called_once_with(ResourceKind.CONTAINERS, "remove", "web")

    def test_nuke_with_yes_after_subcommand(self, backend, mocker):
        prompt = mocker.patch.object(cli.console, "input", return_value="n")
        teardown = mocker.patch("servctl.cli.run_teardown",
                                return_value=[StepResult("Stopping all containers", True)])
        assert cli.docker_main(["nuke", "-y"]) == 0
        prompt.assert_not_called()
        teardown.assert_called_once()

    def test_default_network_cannot_be_removed(self, backend, capsys):
        backend.is_protected_network.return_value = True
        assert cli.docker_main(["-y", "rmn", "bridge"]) == 1
        backend.mutate.assert_not_called()
        assert "Cannot delete default network" in capsys.readouterr().err

    def test_custom_network_removed(self, backend):
        backend.is_protected_network.return_value = False
        assert cli.docker_main(["-y", "rmn", "app_net"]) == 0
        backend.mutate.assert_called_once_with(ResourceKind.NETWORKS, "remove", "app_net")

    def test_interactive_flag(self, mocker):
        run = mocker.patch("servctl.main.run_docker_console", return_value=0)
        assert cli.docker_main(["-i", "-y"]) == 0
        run.assert_called_once_with(skip_confirm=True)


class TestFtpCommands:
    @pytest.fixture
    def ftp(self, mocker):
        f = MagicMock()
        mocker.patch("servctl.cli._ftp_backend", return_value=f)
        return f

    def test_set_port_missing_argument(self, ftp):
        assert cli.ftp_main(["set-port"]) == 1
        ftp.set_port.assert_not_called()

    def test_set_port_invalid(self, ftp):
        ftp.set_port.side_effect = FtpError("Invalid port number: 70000")
        assert cli.ftp_main(["set-port", "70000"]) == 1

    def test_status_not_installed(self, ftp, capsys):
        ftp.status.return_value = FtpStatus(installed=False)
        assert cli.ftp_main(["status"]) == 0
        assert "install" in capsys.readouterr().out

    def test_uninstall_declined(self, ftp, answer):
        ftp.is_installed.return_value = True
        answer("N")
        assert cli.ftp_main(["uninstall"]) == 0
        ftp.uninstall.assert_not_called()

    def test_uninstall_yes_after_subcommand(self, ftp, answer):
        ftp.is_installed.return_value = True
        ftp.uninstall.return_value = MutationResult.success()
        prompt = answer("n")
        assert cli.ftp_main(["uninstall", "--yes"]) == 0
        prompt.assert_not_called()
        ftp.uninstall.assert_called_once_with()

    def test_start_already_running(self, ftp, capsys):
        ftp.start.return_value = MutationResult(True, "Already running", applied=0)
        assert cli.ftp_main(["start"]) == 0
        assert "Already running" in capsys.readouterr().out

    def test_set_root_create_declined(self, ftp, answer):
        ftp.set_root.side_effect = FtpError("Directory does not exist: /x")
        answer("n")
        assert cli.ftp_main(["set-root", "/x"]) == 1
        ftp.set_root.assert_called_once_with("/x")
