"""
Security properties of the generated policies.
"""
import base64
import json

import pytest
import yaml

from k2p.POLICY.annotations import EXEC_COMMANDS_ANNOTATION, POLICY_ANNOTATION
from k2p.POLICY.containerd import MASKED_PATHS, READONLY_PATHS
from k2p.RESOURCES.factory import from_document


def generate(doc, agent_policy, resolver):
    resource = from_document(doc)
    resource.init(resolver)
    text = agent_policy.generate(resource)
    return json.loads(text.partition("policy_data := ")[2])["containers"]


def pod(container, annotations=None, volumes=None):
    metadata = {"name": "web"}
    if annotations:
        metadata["annotations"] = annotations
    spec = {"containers": [container]}
    if volumes:
        spec["volumes"] = volumes
    return {"apiVersion": "v1", "kind": "Pod", "metadata": metadata, "spec": spec}


@pytest.mark.parametrize("privileged", [False, True])
def test_masked_paths_follow_privileged_flag(agent_policy, resolver, privileged):
    doc = pod({"name": "app", "image": "busybox", "securityContext": {"privileged": privileged}})

    linux = generate(doc, agent_policy, resolver)[1]["OCI"]["Linux"]

    if privileged:
        assert linux["maskedPaths"] == []
        assert linux["readonlyPaths"] == []
    else:
        assert linux["maskedPaths"] == MASKED_PATHS
        assert linux["readonlyPaths"] == READONLY_PATHS


def test_unprivileged_container_keeps_default_capabilities(agent_policy, resolver):
    doc = pod({"name": "app", "image": "busybox"})

    process = generate(doc, agent_policy, resolver)[1]["OCI"]["Process"]

    assert "CAP_SYS_ADMIN" not in process["capabilities"]["bounding"]


def test_host_path_is_not_exposed(agent_policy, resolver):
    doc = pod(
        {"name": "app", "image": "busybox", "volumeMounts": [{"name": "host", "mountPath": "/host/etc"}]},
        volumes=[{"name": "host", "hostPath": {"path": "/etc"}}],
    )

    mounts = generate(doc, agent_policy, resolver)[1]["OCI"]["Mounts"]

    mount = [m for m in mounts if m["destination"] == "/host/etc"][0]
    assert mount["source"] != "/etc"
    assert mount["source"].startswith("^/run/kata-containers/shared/containers/")


def test_stale_policy_annotation_not_copied(agent_policy, resolver):
    stale = base64.b64encode(b"package agent_policy\ndefault CreateContainerRequest := true\n").decode()
    doc = pod({"name": "app", "image": "busybox"}, annotations={POLICY_ANNOTATION: stale})

    containers = generate(doc, agent_policy, resolver)

    for container in containers:
        assert POLICY_ANNOTATION not in container["OCI"]["Annotations"]


def test_policy_replaces_stale_annotation(agent_policy, resolver):
    doc = pod({"name": "app", "image": "busybox"}, annotations={POLICY_ANNOTATION: "c3RhbGU="})
    resource = from_document(doc)
    resource.init(resolver)

    tree = yaml.safe_load(resource.serialize(resource.generate_policy(agent_policy)))

    assert tree["metadata"]["annotations"][POLICY_ANNOTATION] != "c3RhbGU="


def test_exec_commands_scoped_per_container(agent_policy, resolver):
    option = [{"containerName": "app", "execCommands": ["cat /etc/hostname"]}]
    doc = pod(
        {"name": "app", "image": "busybox"},
        annotations={EXEC_COMMANDS_ANNOTATION: base64.b64encode(json.dumps(option).encode()).decode()},
    )
    doc["spec"]["containers"].append({"name": "sidecar", "image": "envoy"})

    pause, app, sidecar = generate(doc, agent_policy, resolver)

    assert pause["exec_commands"] == []
    assert app["exec_commands"] == ["cat /etc/hostname"]
    assert sidecar["exec_commands"] == []


def test_secret_values_only_from_referenced_keys(agent_policy, resolver):
    agent_policy.add_secret("creds", {"PASSWORD": "hunter2", "TOKEN": "abc"})
    doc = pod({
        "name": "app",
        "image": "busybox",
        "env": [{"name": "PASSWORD", "valueFrom": {"secretKeyRef": {"name": "creds", "key": "PASSWORD"}}}],
    })

    env = generate(doc, agent_policy, resolver)[1]["OCI"]["Process"]["env"]

    assert "PASSWORD=hunter2" in env
    assert not any(e.startswith("TOKEN=") for e in env)
