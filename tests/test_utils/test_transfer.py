"""Test transfer endpoint parsing and direction detection."""

import pytest

from sshore.utils.transfer import TransferDirection, parse_remote_spec, resolve_transfer


def test_parse_remote_spec() -> None:
    assert parse_remote_spec("web1:/var/log/app.log") == ("web1", "/var/log/app.log")
    assert parse_remote_spec("web1:") == ("web1", "")


@pytest.mark.parametrize("spec", ["/tmp/file", "./notes:today", "../a:b", "plainfile", ":/tmp/x"])
def test_local_paths_are_not_remote(spec: str) -> None:
    assert parse_remote_spec(spec) is None


def test_resolve_download() -> None:
    path = resolve_transfer("web1:/var/log/app.log", "./app.log")

    assert path.direction is TransferDirection.DOWNLOAD
    assert path.host == "web1"
    assert path.remote_path == "/var/log/app.log"
    assert path.local_path == "./app.log"
    assert path.source == "web1:/var/log/app.log"
    assert path.destination == "./app.log"


def test_resolve_upload() -> None:
    path = resolve_transfer("/tmp/build.tar", "web1:/srv/build.tar")

    assert path.direction is TransferDirection.UPLOAD
    assert path.host == "web1"
    assert path.source == "/tmp/build.tar"
    assert path.destination == "web1:/srv/build.tar"


def test_resolve_rejects_two_remotes() -> None:
    with pytest.raises(ValueError, match="Both source and destination are remote"):
        resolve_transfer("web1:/a", "web2:/b")


def test_resolve_rejects_two_locals() -> None:
    with pytest.raises(ValueError, match="Neither source nor destination is remote"):
        resolve_transfer("/a", "./b")
