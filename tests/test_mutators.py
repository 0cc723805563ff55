import pytest

from lro.builders import limitador_deployment, limitador_service
from lro.errors import ContractViolation, MutatorError
from lro.models import Container, EnvVar, Limitador, LimitadorSpec, ObjectMeta, Service, canonical_json
from lro.mutators import CreateOnlyMutator, DeploymentMutator, FieldMutator


def _owner(**spec) -> Limitador:
    return Limitador(metadata=ObjectMeta(name="demo", uid="uid-1"), spec=LimitadorSpec(**spec))


def test_deployment_mutator_syncs_replicas_and_image():
    existing = limitador_deployment(_owner(replicas=1, image="img:v1"))
    desired = limitador_deployment(_owner(replicas=5, image="img:v2"))

    assert DeploymentMutator().mutate(existing, desired) is True
    assert existing.spec.replicas == 5
    assert existing.spec.template.spec.containers[0].image == "img:v2"

    # second application with the same desired state changes nothing
    assert DeploymentMutator().mutate(existing, desired) is False


def test_deployment_mutator_reports_no_change_when_in_sync():
    existing = limitador_deployment(_owner(replicas=3, image="img:v1"))
    desired = limitador_deployment(_owner(replicas=3, image="img:v1"))
    assert DeploymentMutator().mutate(existing, desired) is False


def test_deployment_mutator_leaves_other_fields_alone():
    existing = limitador_deployment(_owner(replicas=1, image="img:v1"))
    existing.metadata.labels["team"] = "edge"
    existing.spec.template.spec.containers[0].env = [EnvVar(name="RUST_LOG", value="debug")]
    existing.spec.template.spec.containers.append(Container(name="sidecar", image="proxy:1"))
    desired = limitador_deployment(_owner(replicas=2, image="img:v2"))

    assert DeploymentMutator().mutate(existing, desired) is True

    assert existing.metadata.labels["team"] == "edge"
    assert existing.spec.template.spec.containers[0].env == [EnvVar(name="RUST_LOG", value="debug")]
    assert existing.spec.template.spec.containers[1].image == "proxy:1"


def test_deployment_mutator_rejects_malformed_existing():
    existing = limitador_deployment(_owner())
    existing.spec.template.spec.containers = []
    desired = limitador_deployment(_owner(replicas=2))

    with pytest.raises(MutatorError, match="containers"):
        DeploymentMutator().mutate(existing, desired)


def test_mutator_rejects_wrong_kind():
    svc = limitador_service(_owner())
    dep = limitador_deployment(_owner())

    with pytest.raises(ContractViolation, match="is not a Deployment"):
        DeploymentMutator().mutate(svc, dep)
    with pytest.raises(ContractViolation):
        DeploymentMutator().mutate(dep, svc)


def test_create_only_mutator_never_changes_anything():
    existing = limitador_service(_owner())
    existing.spec.ports = []
    before = canonical_json(existing)

    assert CreateOnlyMutator(Service).mutate(existing, limitador_service(_owner())) is False
    assert canonical_json(existing) == before


def test_field_mutator_copies_values_instead_of_sharing_them():
    existing = limitador_service(_owner())
    existing.spec.selector = {"app": "old"}
    desired = limitador_service(_owner())

    assert FieldMutator(Service, "spec.selector").mutate(existing, desired) is True
    desired.spec.selector["extra"] = "x"
    assert existing.spec.selector == {"app": "limitador"}


def test_field_mutator_indexes_lists():
    existing = limitador_service(_owner())
    existing.spec.ports[1].port = 1
    desired = limitador_service(_owner())

    mutator = FieldMutator(Service, "spec.ports.1")
    assert mutator.mutate(existing, desired) is True
    assert existing.spec.ports[1].port == 8081
    assert mutator.mutate(existing, desired) is False
