from servctl.model import ContainerInfo
from servctl.usage import build_usage_index


def _container(name, image, mounts, state="running"):
    return ContainerInfo(id=name * 4, short_id=name, name=name, image=image,
                         status="Up", state=state, mounts=tuple(mounts))


def test_index_example():
    containers = [
        _container("web", "nginx", ["data"]),
        _container("db", "postgres", ["data", "pg"]),
    ]
    index = build_usage_index(["data", "pg", "orphan"], containers)

    assert index["data"].referencing_containers == ["web", "db"]
    assert index["data"].originating_image == "nginx"
    assert index["pg"].referencing_containers == ["db"]
    assert index["pg"].originating_image == "postgres"
    assert index["orphan"].referencing_containers == []
    assert index["orphan"].used_by == "(unused)"


def test_key_set_equals_volume_list():
    containers = [_container("app", "alpine", ["listed", "unlisted"])]
    index = build_usage_index(["listed", "other"], containers)
    assert set(index) == {"listed", "other"}


def test_stopped_containers_count_as_references():
    containers = [_container("old", "busybox", ["cache"], state="exited")]
    index = build_usage_index(["cache"], containers)
    assert index["cache"].used_by == "old"


def test_container_listed_once_per_volume():
    containers = [_container("app", "alpine", ["v", "v"])]
    index = build_usage_index(["v"], containers)
    assert index["v"].referencing_containers == ["app"]


def test_empty_inputs():
    assert build_usage_index([], []) == {}
