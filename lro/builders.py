"""Desired state of the children of a Limitador.

Everything here is pure: the same Limitador always yields the same children,
down to the serialized bytes. The mutators and the no-op check rely on it.
"""

from __future__ import annotations

from .errors import ContractViolation
from .models import (
    Container,
    ContainerPort,
    Deployment,
    DeploymentSpec,
    EnvVar,
    HTTPGetAction,
    LabelSelector,
    Limitador,
    ObjectMeta,
    OwnerReference,
    PodSpec,
    PodTemplateMeta,
    PodTemplateSpec,
    Probe,
    Resource,
    Service,
    ServicePort,
    ServiceSpec,
)
from .settings import settings

DEFAULT_REPLICAS = 1
CONTAINER_NAME = "limitador"
STATUS_ENDPOINT = "/status"


def labels() -> dict[str, str]:
    return {"app": "limitador"}


def limitador_image(
    limitador: Limitador,
    repository: str = settings.limitador_repository,
    default_version: str = settings.limitador_version,
) -> str:
    if limitador.spec.image:
        return limitador.spec.image
    return f"{repository}:{limitador.spec.version or default_version}"


def _meta(limitador: Limitador) -> ObjectMeta:
    return ObjectMeta(name=limitador.metadata.name, namespace=limitador.metadata.namespace, labels=labels())


def limitador_service(limitador: Limitador) -> Service:
    listener = limitador.spec.listener
    return Service(
        metadata=_meta(limitador),
        spec=ServiceSpec(
            ports=[
                ServicePort(name="http", port=listener.http.port, target_port="http"),
                ServicePort(name="grpc", port=listener.grpc.port, target_port="grpc"),
            ],
            selector=labels(),
            # headless
            cluster_ip="None",
            type="ClusterIP",
        ),
    )


def _status_probe(timeout_seconds: int) -> Probe:
    return Probe(
        http_get=HTTPGetAction(path=STATUS_ENDPOINT, port="http"),
        initial_delay_seconds=5,
        timeout_seconds=timeout_seconds,
        period_seconds=10,
        success_threshold=1,
        failure_threshold=3,
    )


def limitador_deployment(
    limitador: Limitador,
    repository: str = settings.limitador_repository,
    default_version: str = settings.limitador_version,
) -> Deployment:
    listener = limitador.spec.listener
    replicas = limitador.spec.replicas if limitador.spec.replicas is not None else DEFAULT_REPLICAS
    container = Container(
        name=CONTAINER_NAME,
        image=limitador_image(limitador, repository, default_version),
        ports=[
            ContainerPort(name="http", container_port=listener.http.port),
            ContainerPort(name="grpc", container_port=listener.grpc.port),
        ],
        env=[EnvVar(name="RUST_LOG", value="info")],
        liveness_probe=_status_probe(timeout_seconds=2),
        readiness_probe=_status_probe(timeout_seconds=5),
        image_pull_policy="IfNotPresent",
    )
    return Deployment(
        metadata=_meta(limitador),
        spec=DeploymentSpec(
            replicas=replicas,
            selector=LabelSelector(match_labels=labels()),
            template=PodTemplateSpec(
                metadata=PodTemplateMeta(labels=labels()),
                spec=PodSpec(containers=[container]),
            ),
        ),
    )


def set_controller_reference(owner: Resource, child: Resource) -> None:
    """Make ``owner`` the controlling owner of ``child`` (in place).

    Setting the same owner again is a no-op. The store cascades deletion of
    the owner to every child carrying this reference.
    """
    if owner.metadata.namespace != child.metadata.namespace:
        raise ContractViolation(
            f"{owner.kind} {owner.ref} cannot own {child.kind} {child.ref}: namespaces differ"
        )
    if not owner.metadata.uid:
        raise ContractViolation(f"{owner.kind} {owner.ref} has no uid; fetch it from the store first")
    ref = OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=owner.metadata.name,
        uid=owner.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )
    current = child.controller_owner()
    if current is not None:
        if current.uid != ref.uid:
            raise ContractViolation(f"{child.kind} {child.ref} is already controlled by {current.kind} {current.name}")
        return
    child.metadata.owner_references.append(ref)
