from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import ContractViolation


@dataclass(frozen=True)
class ObjectRef:
    """Identity of a namespaced resource."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class _Model(BaseModel):
    # Wire format is camelCase like the Kubernetes API; Python code uses snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OwnerReference(_Model):
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = False
    block_owner_deletion: bool = False


class ObjectMeta(_Model):
    name: str
    namespace: str = "default"
    uid: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    resource_version: str | None = None
    generation: int | None = None
    creation_timestamp: datetime | None = None
    deletion_timestamp: datetime | None = None
    finalizers: list[str] = Field(default_factory=list)
    owner_references: list[OwnerReference] = Field(default_factory=list)


class Resource(_Model):
    KIND: ClassVar[str] = ""

    api_version: str = ""
    kind: str = ""
    metadata: ObjectMeta

    @property
    def ref(self) -> ObjectRef:
        return ObjectRef(self.metadata.namespace, self.metadata.name)

    def controller_owner(self) -> OwnerReference | None:
        for owner in self.metadata.owner_references:
            if owner.controller:
                return owner
        return None


# --- Limitador ---------------------------------------------------------------


class TransportProtocol(_Model):
    port: int


class Listener(_Model):
    http: TransportProtocol = Field(default_factory=lambda: TransportProtocol(port=8080))
    grpc: TransportProtocol = Field(default_factory=lambda: TransportProtocol(port=8081))


class LimitadorSpec(_Model):
    replicas: int | None = None
    version: str | None = Field(None, description="Tag of the default limitador image")
    image: str | None = Field(None, description="Full image reference, takes precedence over version")
    listener: Listener = Field(default_factory=Listener)


class LimitadorStatus(_Model):
    observed_generation: int | None = None
    service_url: str | None = None


class Limitador(Resource):
    KIND: ClassVar[str] = "Limitador"

    api_version: str = "limitador.3scale.net/v1alpha1"
    kind: Literal["Limitador"] = "Limitador"
    spec: LimitadorSpec = Field(default_factory=LimitadorSpec)
    status: LimitadorStatus = Field(default_factory=LimitadorStatus)


# --- Service -----------------------------------------------------------------


class ServicePort(_Model):
    name: str
    port: int
    target_port: int | str | None = None
    protocol: str = "TCP"


class ServiceSpec(_Model):
    ports: list[ServicePort] = Field(default_factory=list)
    selector: dict[str, str] = Field(default_factory=dict)
    cluster_ip: str | None = Field(None, alias="clusterIP")
    type: str = "ClusterIP"


class Service(Resource):
    KIND: ClassVar[str] = "Service"

    api_version: str = "v1"
    kind: Literal["Service"] = "Service"
    spec: ServiceSpec = Field(default_factory=ServiceSpec)


# --- Deployment --------------------------------------------------------------


class ContainerPort(_Model):
    name: str
    container_port: int
    protocol: str = "TCP"


class EnvVar(_Model):
    name: str
    value: str


class HTTPGetAction(_Model):
    path: str
    port: int | str
    scheme: str = "HTTP"


class Probe(_Model):
    http_get: HTTPGetAction
    initial_delay_seconds: int = 0
    timeout_seconds: int = 1
    period_seconds: int = 10
    success_threshold: int = 1
    failure_threshold: int = 3


class Container(_Model):
    name: str
    image: str
    ports: list[ContainerPort] = Field(default_factory=list)
    env: list[EnvVar] = Field(default_factory=list)
    liveness_probe: Probe | None = None
    readiness_probe: Probe | None = None
    image_pull_policy: str = "IfNotPresent"


class PodSpec(_Model):
    containers: list[Container] = Field(default_factory=list)


class PodTemplateMeta(_Model):
    labels: dict[str, str] = Field(default_factory=dict)


class PodTemplateSpec(_Model):
    metadata: PodTemplateMeta = Field(default_factory=PodTemplateMeta)
    spec: PodSpec = Field(default_factory=PodSpec)


class LabelSelector(_Model):
    match_labels: dict[str, str] = Field(default_factory=dict)


class DeploymentSpec(_Model):
    replicas: int | None = None
    selector: LabelSelector = Field(default_factory=LabelSelector)
    template: PodTemplateSpec = Field(default_factory=PodTemplateSpec)


class Deployment(Resource):
    KIND: ClassVar[str] = "Deployment"

    api_version: str = "apps/v1"
    kind: Literal["Deployment"] = "Deployment"
    spec: DeploymentSpec = Field(default_factory=DeploymentSpec)


# --- wire helpers ------------------------------------------------------------

KINDS: dict[str, type[Resource]] = {cls.KIND: cls for cls in (Limitador, Service, Deployment)}


def kind_for(name: str) -> type[Resource]:
    """Resolve a kind by name, case-insensitively and accepting plurals ("deployments")."""
    wanted = name.lower()
    for kind, cls in KINDS.items():
        if wanted in {kind.lower(), kind.lower() + "s"}:
            return cls
    raise KeyError(name)


def parse_object(body: dict[str, Any]) -> Resource:
    kind = body.get("kind")
    cls = KINDS.get(kind) if isinstance(kind, str) else None
    if cls is None:
        raise ContractViolation(f"Unknown kind {kind!r}")
    return cls.model_validate(body)


def to_wire(obj: Resource) -> dict[str, Any]:
    return obj.model_dump(mode="json", by_alias=True, exclude_none=True)


def canonical_json(obj: Resource) -> bytes:
    """Byte-stable encoding: equal objects always produce equal bytes."""
    return json.dumps(to_wire(obj), sort_keys=True, separators=(",", ":")).encode()
