import json
import threading
import time

from fastapi.testclient import TestClient

import cli
import main
from lro.client import HttpStore
from lro.models import Deployment, ObjectRef


class _Resp:
    def __init__(self, status_code: int, payload: dict):
        self.status_code = status_code
        self._payload = payload

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        return self._payload

    def raise_for_status(self) -> None:
        if not self.ok:
            raise RuntimeError(self.status_code)


def test_apply_creates_missing_limitador(monkeypatch, capsys):
    sent = {}

    def fake_get(url, timeout=10):
        return _Resp(404, {"detail": "not found", "reason": "NotFound"})

    def fake_post(url, json=None, timeout=30):
        sent["url"] = url
        sent["body"] = json
        return _Resp(201, json)

    monkeypatch.setattr(cli.requests, "get", fake_get)
    monkeypatch.setattr(cli.requests, "post", fake_post)

    rc = cli.main(["--api", "http://lro:8000/", "apply", "--name", "demo", "--replicas", "3", "--image", "img:v1"])

    assert rc == 0
    assert sent["url"] == "http://lro:8000/apis/Limitador"
    assert sent["body"]["metadata"] == {"name": "demo", "namespace": "default"}
    assert sent["body"]["spec"] == {"replicas": 3, "image": "img:v1"}
    assert json.loads(capsys.readouterr().out)["kind"] == "Limitador"


def test_apply_updates_only_given_fields(monkeypatch, capsys):
    current = {
        "kind": "Limitador",
        "metadata": {"name": "demo", "namespace": "default", "resourceVersion": "7"},
        "spec": {"replicas": 3, "image": "img:v1"},
    }
    sent = {}

    def fake_get(url, timeout=10):
        return _Resp(200, current)

    def fake_put(url, json=None, timeout=30):
        sent["url"] = url
        sent["body"] = json
        return _Resp(409, {"detail": "stale", "reason": "Conflict"})

    monkeypatch.setattr(cli.requests, "get", fake_get)
    monkeypatch.setattr(cli.requests, "put", fake_put)

    rc = cli.main(["--api", "http://lro:8000", "apply", "--name", "demo", "--replicas", "5"])

    assert rc == 1
    assert sent["url"] == "http://lro:8000/apis/Limitador/default/demo"
    assert sent["body"]["spec"] == {"replicas": 5, "image": "img:v1"}
    assert sent["body"]["metadata"]["resourceVersion"] == "7"
    assert json.loads(capsys.readouterr().out)["reason"] == "Conflict"


def test_apply_posts_the_limitador_api_version(monkeypatch, capsys):
    sent = {}

    def fake_post(url, json=None, timeout=30):
        sent["body"] = json
        return _Resp(201, json)

    monkeypatch.setattr(cli.requests, "get", lambda url, timeout=10: _Resp(404, {"reason": "NotFound"}))
    monkeypatch.setattr(cli.requests, "post", fake_post)

    assert cli.main(["apply", "--name", "demo"]) == 0
    assert sent["body"]["apiVersion"] == "limitador.3scale.net/v1alpha1"


def test_controller_command_passes_options(monkeypatch):
    seen = {}

    def fake_run(base, workers, resync_interval_s):
        seen.update(base=base, workers=workers, resync_interval_s=resync_interval_s)
        return 0

    monkeypatch.setattr(cli, "run_controller", fake_run)

    rc = cli.main(["--api", "http://lro:8000/", "controller", "--workers", "3", "--resync-interval-s", "0.5"])

    assert rc == 0
    assert seen == {"base": "http://lro:8000", "workers": 3, "resync_interval_s": 0.5}


def test_run_controller_reconciles_through_the_api(monkeypatch, tmp_path, store, make_limitador):
    make_limitador(replicas=2, image="img:v1")
    app = main.create_app(store=store, db_path=str(tmp_path / "api.db"), run_controller=False)
    with TestClient(app) as client:
        remote = HttpStore(client=client)
        # the TestClient is closed by the with block
        remote.close = lambda: None
        bases = []

        def fake_store(base):
            bases.append(base)
            return remote

        monkeypatch.setattr(cli, "HttpStore", fake_store)

        stop = threading.Event()
        rc = []
        t = threading.Thread(target=lambda: rc.append(cli.run_controller("http://lro", 1, 0, stop=stop)))
        t.start()
        try:
            deadline = time.monotonic() + 5.0
            while not store.list(Deployment) and time.monotonic() < deadline:
                time.sleep(0.02)
        finally:
            stop.set()
            t.join(5.0)

    assert not t.is_alive()
    assert rc == [0]
    assert bases == ["http://lro"]
    assert store.get(Deployment, ObjectRef("default", "demo")).spec.replicas == 2
