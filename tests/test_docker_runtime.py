from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import ReadTimeout

from labnodes.errors import ContainerRuntimeError, ReadyTimeoutError
from labnodes.readiness import CommandProbe, ReadinessPoller, ReadinessStage, ReadyState
from labnodes.runtime.docker import (
    LABEL_NODE_KIND,
    LABEL_NODE_NAME,
    DockerRuntime,
    parse_bind,
)
from labnodes.schemas import MgmtNet, NodeConfig


def _run(coro):
    return asyncio.run(coro)


def _config(**overrides) -> NodeConfig:
    values = dict(
        short_name="srl1",
        long_name="clab-test-srl1",
        kind="nokia_srlinux",
        node_type="ixrd2",
        image="ghcr.io/nokia/srlinux:latest",
        lab_dir="/tmp/clab-test/srl1",
    )
    values.update(overrides)
    return NodeConfig(**values)


def _runtime():
    client = MagicMock()
    return DockerRuntime(client=client), client


class TestParseBind:
    def test_default_mode(self):
        assert parse_bind("/a:/b") == ("/a", "/b", "rw")

    def test_explicit_mode(self):
        assert parse_bind("/a:/b:ro") == ("/a", "/b", "ro")

    @pytest.mark.parametrize("bind", ["/a", "/a:/b:ro:x", "/a:/b:"])
    def test_invalid(self, bind):
        with pytest.raises(ValueError):
            parse_bind(bind)


def test_container_config_maps_node_fields():
    runtime, _ = _runtime()
    config = _config(
        env={"SRLINUX": "1"},
        sysctls={"net.ipv4.ip_forward": "0"},
        binds=["/lab/config:/etc/opt/srlinux/:rw", "/lab/topology.yml:/tmp/topology.yml:ro"],
        user="0:0",
        cmd="sudo bash -c 'touch /.dockerenv && /opt/srlinux/bin/sr_linux'",
        labels={"team": "net"},
        mgmt_net=MgmtNet(network="clab-mgmt"),
    )

    create = runtime._container_config(config)

    assert create["name"] == "clab-test-srl1"
    assert create["hostname"] == "srl1"
    assert create["environment"] == {"SRLINUX": "1"}
    assert create["sysctls"] == {"net.ipv4.ip_forward": "0"}
    assert create["volumes"]["/lab/config"] == {"bind": "/etc/opt/srlinux/", "mode": "rw"}
    assert create["volumes"]["/lab/topology.yml"] == {"bind": "/tmp/topology.yml", "mode": "ro"}
    assert create["user"] == "0:0"
    assert create["command"] == [
        "sudo", "bash", "-c", "touch /.dockerenv && /opt/srlinux/bin/sr_linux",
    ]
    assert create["network"] == "clab-mgmt"
    assert create["labels"][LABEL_NODE_NAME] == "srl1"
    assert create["labels"][LABEL_NODE_KIND] == "nokia_srlinux"
    assert create["labels"]["team"] == "net"
    assert "entrypoint" not in create


def test_create_container_starts_and_returns_id():
    runtime, client = _runtime()
    container = MagicMock(id="abc123", short_id="abc")
    client.containers.create.return_value = container

    container_id = _run(runtime.create_container(_config()))

    assert container_id == "abc123"
    container.start.assert_called_once()
    _, kwargs = client.containers.create.call_args
    assert kwargs["image"] == "ghcr.io/nokia/srlinux:latest"


def test_create_container_missing_image():
    runtime, client = _runtime()
    client.containers.create.side_effect = ImageNotFound("no such image")

    with pytest.raises(ContainerRuntimeError, match="image ghcr.io/nokia/srlinux:latest not found") as exc_info:
        _run(runtime.create_container(_config()))

    assert exc_info.value.node == "srl1"


def test_create_container_start_failure_removes_container():
    runtime, client = _runtime()
    container = MagicMock(id="abc123")
    container.start.side_effect = APIError("port already allocated")
    client.containers.create.return_value = container

    with pytest.raises(ContainerRuntimeError, match="failed to start"):
        _run(runtime.create_container(_config()))

    container.remove.assert_called_once_with(force=True, v=True)


def test_exec_demultiplexes_output():
    runtime, client = _runtime()
    target = MagicMock()
    target.exec_run.return_value = SimpleNamespace(exit_code=0, output=(b"out", b"err"))
    client.containers.get.return_value = target

    result = _run(runtime.exec("clab-test-srl1", ["sr_cli", "-d", "info"]))

    client.containers.get.assert_called_once_with("clab-test-srl1")
    target.exec_run.assert_called_once_with(["sr_cli", "-d", "info"], demux=True)
    assert result.stdout == b"out"
    assert result.stderr == b"err"
    assert result.stdout_text == "out"


def test_exec_empty_streams():
    runtime, client = _runtime()
    target = MagicMock()
    target.exec_run.return_value = SimpleNamespace(exit_code=None, output=(None, None))
    client.containers.get.return_value = target

    result = _run(runtime.exec("c", ["true"]))

    assert result.stdout == b""
    assert result.stderr == b""
    assert result.exit_code == 0


def test_exec_missing_container():
    runtime, client = _runtime()
    client.containers.get.side_effect = NotFound("gone")

    with pytest.raises(ContainerRuntimeError, match="exec in c failed"):
        _run(runtime.exec("c", ["true"]))


def test_delete_container():
    runtime, client = _runtime()
    target = MagicMock()
    client.containers.get.return_value = target

    _run(runtime.delete_container("clab-test-srl1"))

    target.remove.assert_called_once_with(force=True, v=True)


def test_delete_missing_container_is_noop():
    runtime, client = _runtime()
    client.containers.get.side_effect = NotFound("gone")

    _run(runtime.delete_container("clab-test-srl1"))


def test_delete_api_error():
    runtime, client = _runtime()
    target = MagicMock()
    target.remove.side_effect = APIError("device busy")
    client.containers.get.return_value = target

    with pytest.raises(ContainerRuntimeError, match="failed to remove"):
        _run(runtime.delete_container("clab-test-srl1"))


@pytest.mark.parametrize(
    "error",
    [RequestsConnectionError("daemon restarting"), ReadTimeout("read timed out")],
)
def test_exec_transport_errors_are_wrapped(error):
    runtime, client = _runtime()
    client.containers.get.side_effect = error

    with pytest.raises(ContainerRuntimeError) as exc_info:
        _run(runtime.exec("c", ["true"]))

    assert exc_info.value.__cause__ is error


def test_readiness_retries_through_daemon_outage():
    runtime, client = _runtime()
    client.containers.get.side_effect = RequestsConnectionError("daemon restarting")
    poller = ReadinessPoller(
        runtime=runtime,
        container="clab-test-srl1",
        stages=[
            ReadinessStage(ReadyState.WAITING_MGMT_PROCESS, CommandProbe(["probe"], "running")),
            ReadinessStage(ReadyState.WAITING_COMMIT, CommandProbe(["probe"], "complete")),
        ],
        timeout=0.2,
        interval=0.01,
    )

    with pytest.raises(ReadyTimeoutError):
        _run(poller.wait())

    assert poller.attempts > 1
    assert poller.state == ReadyState.TIMED_OUT


def test_create_container_transport_error():
    runtime, client = _runtime()
    client.containers.create.side_effect = RequestsConnectionError("connection refused")

    with pytest.raises(ContainerRuntimeError, match="failed to create container") as exc_info:
        _run(runtime.create_container(_config()))

    assert exc_info.value.node == "srl1"


@pytest.mark.parametrize(
    "error",
    [DockerException("client misconfigured"), ReadTimeout("read timed out")],
)
def test_delete_non_api_errors_are_wrapped(error):
    runtime, client = _runtime()
    client.containers.get.side_effect = error

    with pytest.raises(ContainerRuntimeError, match="failed to remove"):
        _run(runtime.delete_container("clab-test-srl1"))


def test_delete_releases_container_lock():
    runtime, client = _runtime()
    target = MagicMock()
    target.exec_run.return_value = SimpleNamespace(exit_code=0, output=(b"", None))
    client.containers.get.return_value = target

    _run(runtime.exec("clab-test-srl1", ["true"]))
    assert "clab-test-srl1" in runtime._locks

    _run(runtime.delete_container("clab-test-srl1"))

    assert "clab-test-srl1" not in runtime._locks


def test_failed_delete_keeps_container_lock():
    runtime, client = _runtime()
    target = MagicMock()
    target.remove.side_effect = APIError("device busy")
    client.containers.get.return_value = target

    with pytest.raises(ContainerRuntimeError):
        _run(runtime.delete_container("clab-test-srl1"))

    assert "clab-test-srl1" in runtime._locks
