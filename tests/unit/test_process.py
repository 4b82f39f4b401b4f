"""
Unit tests for process resolution.
"""
import pytest

from k2p.exceptions import ImageResolutionError, MalformedFieldError
from k2p.MODELS.image_metadata import ImageConfig
from k2p.MODELS.kubernetes import Container, PodSecurityContext
from k2p.MODELS.oci import Process, User
from k2p.POLICY import containerd
from k2p.POLICY.process import (
    EnvResolver,
    add_missing,
    parse_image_user,
    resolve_image_process,
    resolve_infra_process,
    resolve_yaml_process,
)


def container(**fields):
    return Container.model_validate({"name": "app", "image": "busybox", **fields})


def resolve(c, image_config=None, pod_security_context=None, env=None):
    process = containerd.get_process(c.privileged)
    resolve_yaml_process(process, c, pod_security_context, env or [])
    resolve_image_process(process, ImageConfig.model_validate(image_config or {}), c, pod_security_context)
    return process


class TestArgs:
    """Tests for the command line precedence."""

    def test_yaml_args_replace_image_cmd(self):
        process = resolve(container(args=["a"]), {"Cmd": ["b"]})
        assert process.args == ["a"]

    def test_image_entrypoint_and_cmd(self):
        process = resolve(container(), {"Entrypoint": ["e"], "Cmd": ["c"]})
        assert process.args == ["e", "c"]

    def test_yaml_args_keep_image_entrypoint(self):
        process = resolve(container(args=["--port", "80"]), {"Entrypoint": ["/server"], "Cmd": ["--help"]})
        assert process.args == ["/server", "--port", "80"]

    def test_yaml_command_replaces_entrypoint_and_cmd(self):
        process = resolve(container(command=["/bin/sh", "-c"], args=["sleep 10"]), {"Entrypoint": ["e"], "Cmd": ["c"]})
        assert process.args == ["/bin/sh", "-c", "sleep 10"]

    def test_empty_yaml_command_still_counts(self):
        process = resolve(container(command=[]), {"Entrypoint": ["e"], "Cmd": ["c"]})
        assert process.args == []


class TestUser:
    """Tests for uid and gid precedence."""

    def test_image_user(self):
        process = resolve(container(), {"User": "1000:2000"})
        assert (process.user.uid, process.user.gid) == (1000, 2000)

    def test_yaml_user_wins(self):
        process = resolve(container(securityContext={"runAsUser": 5}), {"User": "1000:2000"})
        assert (process.user.uid, process.user.gid) == (5, 2000)

    def test_pod_security_context(self):
        pod_sc = PodSecurityContext(run_as_user=7, run_as_group=8, supplemental_groups=[10], fs_group=20)
        process = resolve(container(), {"User": "1000"}, pod_security_context=pod_sc)
        assert (process.user.uid, process.user.gid) == (7, 8)
        assert process.user.additional_gids == [10, 20]

    def test_non_numeric_image_user_fails(self):
        with pytest.raises(ImageResolutionError) as excinfo:
            resolve(container(), {"User": "nginx"})
        assert excinfo.value.image == container().image
        assert "nginx" in excinfo.value.reason

    @pytest.mark.parametrize("user", ["1000:www", ":5", "app:1000"])
    def test_non_numeric_image_user_part_fails(self, user):
        with pytest.raises(ImageResolutionError):
            parse_image_user(user, "img")

    def test_parse_image_user(self):
        assert parse_image_user("1000", "img") == (1000, None)
        assert parse_image_user("1000:50", "img") == (1000, 50)


class TestImageDefaults:
    """Tests for the fields the image fills in."""

    def test_env_appended_after_yaml(self):
        process = resolve(container(), {"Env": ["PATH=/bin", "A=1"]}, env=["A=1", "B=2"])
        assert process.env == ["A=1", "B=2", "PATH=/bin"]

    def test_working_dir(self):
        assert resolve(container(), {"WorkingDir": "/srv"}).cwd == "/srv"
        assert resolve(container(workingDir="/app"), {"WorkingDir": "/srv"}).cwd == "/app"
        assert resolve(container(), {}).cwd == "/"

    def test_tty(self):
        assert resolve(container(), {"Tty": True}).terminal is True
        assert resolve(container(tty=False), {"Tty": True}).terminal is False


def test_capabilities_add_and_drop():
    process = resolve(container(securityContext={"capabilities": {"add": ["NET_ADMIN"], "drop": ["ALL"]}}))
    assert process.capabilities.bounding == ["CAP_NET_ADMIN"]
    assert process.capabilities.effective == ["CAP_NET_ADMIN"]
    assert process.capabilities.permitted == ["CAP_NET_ADMIN"]


def test_capabilities_drop_one():
    process = resolve(container(securityContext={"capabilities": {"drop": ["NET_RAW"]}}))
    assert "CAP_NET_RAW" not in process.capabilities.bounding
    assert "CAP_CHOWN" in process.capabilities.bounding


def test_privileged_capabilities():
    process = resolve(container(securityContext={"privileged": True, "capabilities": {"drop": ["ALL"]}}))
    assert process.capabilities.bounding == containerd.DEFAULT_UNIX_CAPS_PRIVILEGED


def test_infra_process():
    process = Process(args=["run"], env=["A=1"], user=User(uid=0, gid=3))
    infra = Process(args=["run", "--infra"], env=["HOSTNAME=$(host-name)"], user=User(uid=65535, gid=65535, additional_gids=[1], username="kata"))

    resolve_infra_process(process, infra)

    assert process.user.uid == 65535
    assert process.user.gid == 3
    assert process.user.additional_gids == [1]
    assert process.user.username == "kata"
    assert process.args == ["run", "--infra"]
    assert process.env == ["A=1", "HOSTNAME=$(host-name)"]


def test_add_missing():
    dest = ["a", "b"]
    add_missing(["b", "c", "c"], dest)
    assert dest == ["a", "b", "c"]


class TestEnvResolver:
    """Tests for env and envFrom resolution."""

    @pytest.fixture
    def env_resolver(self):
        return EnvResolver(
            "prod",
            config_maps={"settings": {"MODE": "fast", "LEVEL": "3"}},
            secrets={"creds": {"PASSWORD": "hunter2"}},
            labels={"app": "web"},
        )

    def test_values_and_field_refs(self, env_resolver):
        c = container(env=[
            {"name": "PLAIN", "value": "x"},
            {"name": "EMPTY"},
            {"name": "POD", "valueFrom": {"fieldRef": {"fieldPath": "metadata.name"}}},
            {"name": "NS", "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}}},
            {"name": "IP", "valueFrom": {"fieldRef": {"fieldPath": "status.podIP"}}},
            {"name": "APP", "valueFrom": {"fieldRef": {"fieldPath": "metadata.labels['app']"}}},
        ])

        assert env_resolver.resolve(c, "Pod/web") == [
            "PLAIN=x",
            "EMPTY=",
            "POD=$(sandbox-name)",
            "NS=prod",
            "IP=$(pod-ip)",
            "APP=web",
        ]

    def test_key_refs(self, env_resolver):
        c = container(env=[
            {"name": "MODE", "valueFrom": {"configMapKeyRef": {"name": "settings", "key": "MODE"}}},
            {"name": "PASSWORD", "valueFrom": {"secretKeyRef": {"name": "creds", "key": "PASSWORD"}}},
            {"name": "OPTIONAL", "valueFrom": {"configMapKeyRef": {"name": "missing", "key": "X", "optional": True}}},
        ])

        assert env_resolver.resolve(c, "Pod/web") == ["MODE=fast", "PASSWORD=hunter2"]

    def test_missing_key_ref(self, env_resolver):
        c = container(env=[{"name": "X", "valueFrom": {"configMapKeyRef": {"name": "settings", "key": "NOPE"}}}])

        with pytest.raises(MalformedFieldError) as excinfo:
            env_resolver.resolve(c, "Pod/web")
        assert "app.env.X" in str(excinfo.value)

    def test_env_from_first(self, env_resolver):
        c = container(
            envFrom=[{"configMapRef": {"name": "settings"}, "prefix": "CFG_"}],
            env=[{"name": "LOCAL", "value": "1"}],
        )

        assert env_resolver.resolve(c, "Pod/web") == ["CFG_MODE=fast", "CFG_LEVEL=3", "LOCAL=1"]

    def test_resource_field_ref(self, env_resolver):
        c = container(
            resources={"limits": {"cpu": "500m"}},
            env=[{"name": "CPU", "valueFrom": {"resourceFieldRef": {"resource": "limits.cpu"}}}],
        )
        assert env_resolver.resolve(c, "Pod/web") == ["CPU=500m"]

        undeclared = container(env=[{"name": "MEM", "valueFrom": {"resourceFieldRef": {"resource": "limits.memory"}}}])
        with pytest.raises(MalformedFieldError):
            env_resolver.resolve(undeclared, "Pod/web")
