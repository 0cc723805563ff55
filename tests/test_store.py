import logging

import pytest

from lro import db
from lro.builders import limitador_deployment, set_controller_reference
from lro.db import EventLogHandler, SqliteStore
from lro.models import Deployment, Limitador, LimitadorSpec, ObjectMeta, ObjectRef
from lro.store import AlreadyExists, Conflict, MemoryStore, NotFound


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SqliteStore(str(tmp_path / "store.db"))


def _limitador(name="demo", namespace="default", **kwargs) -> Limitador:
    finalizers = kwargs.pop("finalizers", [])
    return Limitador(
        metadata=ObjectMeta(name=name, namespace=namespace, finalizers=finalizers),
        spec=LimitadorSpec(**kwargs),
    )


def test_create_sets_server_fields(any_store):
    created = any_store.create(_limitador(replicas=2))

    assert created.metadata.uid
    assert created.metadata.resource_version
    assert created.metadata.generation == 1
    assert created.metadata.creation_timestamp is not None
    assert created.spec.replicas == 2

    with pytest.raises(AlreadyExists):
        any_store.create(_limitador())


def test_get_missing_raises_not_found(any_store):
    with pytest.raises(NotFound):
        any_store.get(Limitador, ObjectRef("default", "nope"))


def test_get_returns_independent_copies(any_store):
    any_store.create(_limitador(replicas=1))
    obj = any_store.get(Limitador, ObjectRef("default", "demo"))
    obj.spec.replicas = 7

    assert any_store.get(Limitador, ObjectRef("default", "demo")).spec.replicas == 1


def test_stale_update_is_rejected(any_store):
    any_store.create(_limitador(replicas=1))
    first = any_store.get(Limitador, ObjectRef("default", "demo"))
    second = any_store.get(Limitador, ObjectRef("default", "demo"))

    first.spec.replicas = 2
    any_store.update(first)

    second.spec.replicas = 3
    with pytest.raises(Conflict) as ei:
        any_store.update(second)
    assert ei.value.retryable
    assert any_store.get(Limitador, ObjectRef("default", "demo")).spec.replicas == 2


def test_generation_only_moves_on_spec_change(any_store):
    created = any_store.create(_limitador(replicas=1))

    created.metadata.labels["tier"] = "gold"
    relabeled = any_store.update(created)
    assert relabeled.metadata.generation == 1
    assert relabeled.metadata.resource_version != created.metadata.resource_version

    relabeled.spec.replicas = 4
    assert any_store.update(relabeled).metadata.generation == 2


def test_update_missing_raises_not_found(any_store):
    obj = _limitador()
    obj.metadata.resource_version = "1"
    with pytest.raises(NotFound):
        any_store.update(obj)


def test_delete_cascades_to_owned_children(any_store):
    owner = any_store.create(_limitador())
    child = limitador_deployment(owner)
    set_controller_reference(owner, child)
    any_store.create(child)

    any_store.delete(Limitador, owner.ref)

    with pytest.raises(NotFound):
        any_store.get(Limitador, owner.ref)
    with pytest.raises(NotFound):
        any_store.get(Deployment, owner.ref)


def test_finalizers_hold_deletion_until_released(any_store):
    owner = any_store.create(_limitador(finalizers=["example.com/cleanup"]))

    any_store.delete(Limitador, owner.ref)
    marked = any_store.get(Limitador, owner.ref)
    assert marked.metadata.deletion_timestamp is not None

    marked.metadata.finalizers = []
    any_store.update(marked)
    with pytest.raises(NotFound):
        any_store.get(Limitador, owner.ref)


def test_list_filters_by_kind_and_namespace(any_store):
    any_store.create(_limitador("a", "ns1"))
    any_store.create(_limitador("b", "ns2"))
    any_store.create(_limitador("c", "ns1"))

    assert [o.metadata.name for o in any_store.list(Limitador)] == ["a", "c", "b"]
    assert [o.metadata.name for o in any_store.list(Limitador, "ns1")] == ["a", "c"]
    assert any_store.list(Deployment) == []


def test_sqlite_store_survives_reopen(tmp_path):
    path = str(tmp_path / "lro.db")
    SqliteStore(path).create(_limitador(replicas=3))

    assert SqliteStore(path).get(Limitador, ObjectRef("default", "demo")).spec.replicas == 3


def test_db_path_may_be_a_directory(tmp_path):
    SqliteStore(str(tmp_path)).create(_limitador())
    assert (tmp_path / "lro.db").exists()


def test_event_log_handler_persists_records(tmp_path):
    path = str(tmp_path / "events.db")
    db.init_db(path)
    logger = logging.getLogger("lro.test_events")
    logger.setLevel(logging.INFO)
    handler = EventLogHandler(path)
    logger.addHandler(handler)
    try:
        logger.info("Created %s %s", "Deployment", "ns1/demo", extra={"kind": "Deployment", "namespace": "ns1", "resource": "demo"})
        logger.debug("not persisted")
    finally:
        logger.removeHandler(handler)

    (event,) = db.latest_events(path=path)
    assert event["level"] == "INFO"
    assert event["message"] == "Created Deployment ns1/demo"
    assert (event["kind"], event["namespace"], event["name"]) == ("Deployment", "ns1", "demo")
