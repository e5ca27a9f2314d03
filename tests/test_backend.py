import pytest
from unittest.mock import MagicMock

import docker.errors
import requests

from servctl.backend import (
    DockerBackend, ManagerTimeout, ManagerUnavailable, MalformedRecord, ResourceNotFound,
    parse_container, parse_image, parse_network, parse_volume,
)
from servctl.model import ResourceKind

RAW_CONTAINER = {
    "Id": "0123456789abcdef",
    "Names": ["/web"],
    "Image": "nginx:latest",
    "Status": "Up 2 hours",
    "State": "running",
    "Ports": [{"IP": "0.0.0.0", "PrivatePort": 80, "PublicPort": 8080, "Type": "tcp"}],
    "Mounts": [
        {"Type": "volume", "Name": "data"},
        {"Type": "bind", "Source": "/srv"},
    ],
}


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def backend(client):
    return DockerBackend(client=client)


class TestParsers:
    def test_container(self):
        c = parse_container(RAW_CONTAINER)
        assert c.name == "web"
        assert c.short_id == "0123456789ab"
        assert c.is_running
        assert c.mounts == ("data",)
        assert c.ports == "0.0.0.0:8080->80/tcp"

    def test_container_without_name_is_malformed(self):
        with pytest.raises(MalformedRecord):
            parse_container({"Id": "x", "Names": []})

    def test_image_tags_and_dangling(self):
        img = parse_image({"Id": "sha256:abcdef0123456789", "RepoTags": ["<none>:<none>"],
                           "Size": 2 * 1024 * 1024, "Created": 0})
        assert img.dangling
        assert img.display_name == "<none>:<none>"
        assert img.short_id == "abcdef012345"
        assert img.size_mb == 2.0

    def test_volume_and_network(self):
        assert parse_volume({"Name": "data", "Driver": "local"}).driver == "local"
        net = parse_network({"Id": "abc", "Name": "bridge", "Driver": "bridge", "Scope": "local"})
        assert net.fields == ("bridge", "local")
        with pytest.raises(MalformedRecord):
            parse_volume({"Driver": "local"})


class TestListing:
    def test_malformed_rows_are_skipped(self, backend, client):
        client.api.containers.return_value = [RAW_CONTAINER, {"Id": None}]
        assert [c.name for c in backend.list_containers()] == ["web"]
        client.api.containers.assert_called_once_with(all=True)

    def test_list_volumes_handles_empty_response(self, backend, client):
        client.api.volumes.return_value = {"Volumes": None}
        assert backend.list_volumes() == []

    def test_usage_index_uses_one_inventory(self, backend, client):
        client.api.volumes.return_value = {"Volumes": [{"Name": "data"}, {"Name": "spare"}]}
        client.api.containers.return_value = [RAW_CONTAINER]
        index = backend.usage_index()
        assert index["data"].used_by == "web"
        assert index["spare"].used_by == "(unused)"
        client.api.containers.assert_called_once()

    def test_connection_error_is_fatal(self, backend, client):
        client.api.images.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(ManagerUnavailable):
            backend.list_images()

    def test_read_timeout_is_not_fatal(self, backend, client):
        client.api.containers.side_effect = requests.exceptions.ReadTimeout("slow")
        with pytest.raises(ManagerTimeout):
            backend.list_containers()

    def test_connect_timeout_is_fatal(self, backend, client):
        client.api.containers.side_effect = requests.exceptions.ConnectTimeout("no answer")
        with pytest.raises(ManagerUnavailable) as exc:
            backend.list_containers()
        assert not isinstance(exc.value, ManagerTimeout)

    def test_list_resources_dispatch(self, backend, client):
        client.api.networks.return_value = [{"Id": "n1", "Name": "host"}]
        assert backend.list_resources(ResourceKind.NETWORKS)[0].name == "host"


class TestMutations:
    def test_start_success(self, backend, client):
        res = backend.mutate(ResourceKind.CONTAINERS, "start", "web")
        assert res.ok and res.applied == 1
        client.containers.get.assert_called_once_with("web")
        client.containers.get.return_value.start.assert_called_once()

    def test_not_found_becomes_failure(self, backend, client):
        client.containers.get.side_effect = docker.errors.NotFound("gone")
        res = backend.mutate(ResourceKind.CONTAINERS, "stop", "ghost")
        assert not res.ok
        assert res.message == "not found"

    def test_api_error_carries_explanation(self, backend, client):
        client.images.remove.side_effect = docker.errors.APIError("conflict", explanation="image is in use")
        res = backend.mutate(ResourceKind.IMAGES, "remove", "img")
        assert not res.ok
        assert res.message == "image is in use"

    def test_transport_error_on_mutation_is_fatal(self, backend, client):
        client.volumes.get.side_effect = requests.exceptions.ConnectionError("down")
        with pytest.raises(ManagerUnavailable):
            backend.mutate(ResourceKind.VOLUMES, "remove", "data")

    def test_destroy_removes_volumes(self, backend, client):
        backend.mutate(ResourceKind.CONTAINERS, "destroy", "web")
        client.containers.get.return_value.remove.assert_called_once_with(v=True)

    def test_multiple_targets_aggregate(self, backend, client):
        client.networks.get.side_effect = [MagicMock(), docker.errors.NotFound("x")]
        res = backend.mutate(ResourceKind.NETWORKS, "remove", "a", "b")
        assert not res.ok
        assert (res.applied, res.failed) == (1, 1)

    def test_unknown_verb(self, backend):
        with pytest.raises(ValueError):
            backend.mutate(ResourceKind.VOLUMES, "restart", "data")

    def test_stop_all_without_running(self, backend, client):
        client.api.containers.return_value = []
        res = backend.mutate(ResourceKind.CONTAINERS, "stop_all")
        assert res.ok
        assert res.applied == 0
        assert res.message == "No running containers"

    def test_remove_custom_networks_skips_protected(self, backend, client):
        client.api.networks.return_value = [
            {"Id": "1", "Name": "bridge"}, {"Id": "2", "Name": "host"},
            {"Id": "3", "Name": "none"}, {"Id": "4", "Name": "app"},
        ]
        res = backend.remove_custom_networks()
        client.api.remove_network.assert_called_once_with("4")
        assert res.applied == 1

    def test_bulk_partial_failure_counts(self, backend, client):
        client.api.volumes.return_value = {"Volumes": [{"Name": "a"}, {"Name": "b"}, {"Name": "c"}]}
        client.api.remove_volume.side_effect = [None, docker.errors.APIError("in use"), None]
        res = backend.remove_all_volumes()
        assert not res.ok
        assert (res.applied, res.failed) == (2, 1)

    def test_prune_volumes_verb(self, backend, client):
        client.volumes.prune.return_value = {"VolumesDeleted": ["old"]}
        result = backend.mutate(ResourceKind.VOLUMES, "prune_volumes")
        assert result.ok and result.applied == 1
        client.volumes.prune.assert_called_once_with()

    def test_prune_system(self, backend, client):
        assert backend.prune_system().ok
        client.images.prune.assert_called_once_with(filters={"dangling": True})
        client.volumes.prune.assert_not_called()
        client.api.prune_builds.assert_called_once()


class TestInformation:
    def test_inspect_not_found(self, backend, client):
        client.api.inspect_container.side_effect = docker.errors.NotFound("nope")
        with pytest.raises(ResourceNotFound):
            backend.inspect(ResourceKind.CONTAINERS, "ghost")

    def test_get_logs_decodes(self, backend, client):
        client.api.logs.return_value = b"one\ntwo\n"
        assert backend.get_logs("web", tail=10) == ["one", "two"]
        client.api.logs.assert_called_once_with("web", tail=10)

    def test_shell_command_fallback_order(self, backend):
        assert backend.shell_command("web") == [
            ["docker", "exec", "-it", "web", "bash"],
            ["docker", "exec", "-it", "web", "sh"],
        ]

    def test_container_stats(self, backend, client):
        client.api.stats.return_value = {
            "cpu_stats": {"cpu_usage": {"total_usage": 200}, "system_cpu_usage": 2000, "online_cpus": 2},
            "precpu_stats": {"cpu_usage": {"total_usage": 100}, "system_cpu_usage": 1000},
            "memory_stats": {"usage": 10 * 1024 * 1024},
        }
        assert backend.container_stats("web") == ("20.0%", "10.0MB")

    def test_summary(self, backend, client):
        client.api.info.return_value = {"ContainersRunning": 1, "Containers": 3, "Images": 4}
        client.api.volumes.return_value = {"Volumes": [{"Name": "a"}]}
        assert backend.summary() == {"running": 1, "containers": 3, "images": 4, "volumes": 1}

    def test_ping_failure(self, backend, client):
        client.ping.side_effect = docker.errors.APIError("no")
        with pytest.raises(ManagerUnavailable):
            backend.ping()


def test_from_env_failure_is_manager_unavailable(mocker):
    mocker.patch("docker.from_env", side_effect=docker.errors.DockerException("no socket"))
    with pytest.raises(ManagerUnavailable):
        DockerBackend()
