"""
Unit tests for the manifest applier.

Covers create, update on "already exists", conflict retries and owner
reference enforcement against the in-memory fake cluster.
"""

from unittest.mock import patch

import pytest

from self_service.errors import ApplyError, ConflictError, TransportError, UnknownKindError, ValidationError
from self_service.project.apply_manifests import apply_yaml_manifest, create_or_update, ensure_owner_reference
from self_service.project.model import Project


CONFIGMAP = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: settings
  namespace: team-a
data:
  color: {color}
"""


def configmap(color="blue"):
    return CONFIGMAP.format(color=color)


POD = """\
apiVersion: v1
kind: Pod
metadata:
  name: web
  namespace: team-a
spec:
  containers:
    - name: main
      image: {image}
"""


def pod(image):
    return POD.format(image=image)


def controllers(obj):
    return [ref for ref in obj["metadata"].get("ownerReferences", []) if ref.get("controller")]


@pytest.mark.unit
class TestApplyYamlManifest:
    """Test apply_yaml_manifest()."""

    @pytest.mark.asyncio
    async def test_creates_object_controlled_by_project(self, fake_client, cluster, project):
        obj = await apply_yaml_manifest(fake_client, configmap(), project)

        assert obj["data"] == {"color": "blue"}
        assert controllers(obj) == [project.owner_reference()]
        assert cluster.get_object("ConfigMap", "settings", "team-a") == obj

    @pytest.mark.asyncio
    async def test_reapply_is_idempotent(self, fake_client, cluster, project):
        await apply_yaml_manifest(fake_client, configmap("blue"), project)
        await apply_yaml_manifest(fake_client, configmap("blue"), project)
        obj = await apply_yaml_manifest(fake_client, configmap("green"), project)

        assert len(cluster.objects_of("ConfigMap")) == 1
        assert obj["data"] == {"color": "green"}
        assert len(obj["metadata"]["ownerReferences"]) == 1
        assert controllers(obj)[0]["uid"] == project.uid
        assert cluster.actions("delete") == []

    @pytest.mark.asyncio
    async def test_owner_reference_is_patched_only_once(self, fake_client, cluster, project):
        await apply_yaml_manifest(fake_client, configmap(), project)
        cluster.calls.clear()
        await apply_yaml_manifest(fake_client, configmap(), project)

        # Only the content update; the owner reference is already in place
        assert len(cluster.actions("patch", "ConfigMap")) == 1

    @pytest.mark.asyncio
    async def test_foreign_controller_is_rejected(self, fake_client, cluster, project):
        other = Project.new("team-b", uid="11111111-2222-3333-4444-555555555555")
        await apply_yaml_manifest(fake_client, configmap(), other)

        with pytest.raises(ApplyError, match="already controlled by Project team-b"):
            await apply_yaml_manifest(fake_client, configmap(), project)

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_apply_error(self, fake_client, cluster, project):
        cause = TransportError("create failed with status 500: Internal Server Error", status=500)
        cluster.inject_error("create", "ConfigMap", cause)

        with pytest.raises(ApplyError) as exc_info:
            await apply_yaml_manifest(fake_client, configmap(), project)

        assert exc_info.value.__cause__ is cause
        assert "/api/v1/namespaces/team-a/configmaps/settings" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_validation_errors_pass_through(self, fake_client, project):
        with pytest.raises(ValidationError):
            await apply_yaml_manifest(fake_client, "apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: x\n", project)

    @pytest.mark.asyncio
    async def test_unknown_kind_passes_through(self, fake_client, project):
        manifest = "apiVersion: example.com/v1\nkind: Widget\nmetadata:\n  name: w\n  namespace: team-a\n"

        with pytest.raises(UnknownKindError):
            await apply_yaml_manifest(fake_client, manifest, project)

    @pytest.mark.asyncio
    async def test_project_without_uid_cannot_own(self, fake_client, cluster):
        with pytest.raises(ValidationError):
            await apply_yaml_manifest(fake_client, configmap(), Project.new("team-a"))

        assert cluster.calls == []


@pytest.mark.unit
class TestCreateOrUpdate:
    """Test create_or_update()."""

    @pytest.mark.asyncio
    async def test_update_keeps_live_owner_references(self, fake_client, cluster, project):
        api = await fake_client.api("v1", "ConfigMap", namespace="team-a")
        owner = project.owner_reference()
        await api.create({"apiVersion": "v1", "kind": "ConfigMap",
                          "metadata": {"name": "settings", "ownerReferences": [owner]}, "data": {"a": "1"}})

        updated = await create_or_update(api, {"apiVersion": "v1", "kind": "ConfigMap",
                                               "metadata": {"name": "settings"}, "data": {"a": "2"}})

        assert updated["data"] == {"a": "2"}
        assert updated["metadata"]["ownerReferences"] == [owner]

    @pytest.mark.asyncio
    async def test_update_keeps_server_populated_fields(self, fake_client, cluster, project):
        pods = await fake_client.api("v1", "Pod", namespace="team-a")
        token_volume = {"name": "kube-api-access-x7k2p", "projected": {"sources": []}}
        await apply_yaml_manifest(fake_client, pod("nginx:1.25"), project)
        # What the scheduler and admission chain fill in after creation
        await pods.patch("web", {"spec": {"nodeName": "node-1", "volumes": [token_volume]}})
        cluster.calls.clear()

        obj = await apply_yaml_manifest(fake_client, pod("nginx:1.27"), project)

        assert obj["spec"]["nodeName"] == "node-1"
        assert obj["spec"]["volumes"] == [token_volume]
        assert obj["spec"]["containers"] == [{"name": "main", "image": "nginx:1.27"}]
        assert controllers(obj) == [project.owner_reference()]
        assert [action for action, _, _, _ in cluster.calls] == ["create", "patch"]

    @pytest.mark.asyncio
    async def test_update_is_guarded_by_live_resource_version(self, fake_client, cluster):
        api = await fake_client.api("v1", "ConfigMap", namespace="team-a")
        body = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "settings"}, "data": {"a": "1"}}
        live = await api.create(body)

        with patch.object(api, "patch", wraps=api.patch) as patched:
            await create_or_update(api, dict(body, data={"a": "2"}))

        sent = patched.call_args.args[1]
        assert sent["metadata"]["resourceVersion"] == live["metadata"]["resourceVersion"]

    @pytest.mark.asyncio
    async def test_conflict_is_retried_with_fresh_read(self, fake_client, cluster):
        api = await fake_client.api("v1", "ConfigMap", namespace="team-a")
        body = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "settings"}, "data": {"a": "1"}}
        await api.create(body)
        cluster.inject_error("patch", "ConfigMap", ConflictError("patch failed: modified"))

        updated = await create_or_update(api, dict(body, data={"a": "2"}), attempts=3)

        assert updated["data"] == {"a": "2"}
        assert len(cluster.actions("patch", "ConfigMap")) == 2

    @pytest.mark.asyncio
    async def test_conflicts_exhaust_attempts(self, fake_client, cluster):
        api = await fake_client.api("v1", "ConfigMap", namespace="team-a")
        body = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "settings"}}
        await api.create(body)
        for _ in range(2):
            cluster.inject_error("patch", "ConfigMap", ConflictError("patch failed: modified"))

        with pytest.raises(ConflictError):
            await create_or_update(api, body, attempts=2)


@pytest.mark.unit
class TestEnsureOwnerReference:
    """Test ensure_owner_reference()."""

    @pytest.mark.asyncio
    async def test_keeps_non_controller_references(self, fake_client, cluster, project):
        api = await fake_client.api("v1", "ConfigMap", namespace="team-a")
        extra = {"apiVersion": "v1", "kind": "ConfigMap", "name": "other", "uid": "other-uid"}
        obj = await api.create({"apiVersion": "v1", "kind": "ConfigMap",
                                "metadata": {"name": "settings", "ownerReferences": [extra]}})

        patched = await ensure_owner_reference(api, obj, project.owner_reference())

        assert patched["metadata"]["ownerReferences"] == [extra, project.owner_reference()]

    @pytest.mark.asyncio
    async def test_stale_object_is_reread_on_conflict(self, fake_client, cluster, project):
        api = await fake_client.api("v1", "ConfigMap", namespace="team-a")
        stale = await api.create({"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "settings"}})
        await api.patch("settings", {"data": {"changed": "yes"}})

        patched = await ensure_owner_reference(api, stale, project.owner_reference())

        assert patched["data"] == {"changed": "yes"}
        assert controllers(patched)[0]["uid"] == project.uid
