from __future__ import annotations

import argparse
import json
import logging
import sys
from threading import Event
from typing import Any

import requests

from lro.client import HttpStore
from lro.controller import Controller
from lro.settings import settings
from lro.store import StoreUnavailable

logger = logging.getLogger("lro.cli")


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _limitador_spec(args: argparse.Namespace) -> dict[str, Any]:
    spec: dict[str, Any] = {}
    if args.replicas is not None:
        spec["replicas"] = args.replicas
    if args.image:
        spec["image"] = args.image
    if args.version:
        spec["version"] = args.version
    return spec


def apply_limitador(base: str, args: argparse.Namespace) -> requests.Response:
    """Create the Limitador, or update the spec fields given on the command line."""
    url = f"{base}/apis/Limitador/{args.namespace}/{args.name}"
    r = requests.get(url, timeout=10)
    if r.status_code == 404:
        body = {
            "apiVersion": "limitador.3scale.net/v1alpha1",
            "kind": "Limitador",
            "metadata": {"name": args.name, "namespace": args.namespace},
            "spec": _limitador_spec(args),
        }
        return requests.post(f"{base}/apis/Limitador", json=body, timeout=30)
    r.raise_for_status()
    body = r.json()
    body.setdefault("spec", {}).update(_limitador_spec(args))
    # resourceVersion from the GET guards against overwriting a concurrent change
    return requests.put(url, json=body, timeout=30)


def run_controller(
    base: str,
    workers: int = settings.workers,
    resync_interval_s: float = settings.resync_interval_s,
    stop: Event | None = None,
) -> int:
    """Reconcile the objects served at ``base`` until interrupted or ``stop`` is set.

    The API only notifies a controller running in its own process, so a
    separate controller learns about writes through its periodic resync.
    """
    stop = stop or Event()
    store = HttpStore(base)
    controller = Controller(store, workers=workers, resync_interval_s=resync_interval_s)
    controller.start()
    try:
        try:
            controller.resync()
        except StoreUnavailable as e:
            logger.error("Initial resync failed, waiting for the next one: %s", e)
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        controller.stop()
        store.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Limitador Reconciliation Operator CLI")
    p.add_argument("--api", default=settings.api_url, help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_apply = sub.add_parser("apply", help="Create or update a Limitador")
    s_apply.add_argument("--name", required=True)
    s_apply.add_argument("--namespace", default="default")
    s_apply.add_argument("--replicas", type=int)
    s_apply.add_argument("--image", help="Full image reference")
    s_apply.add_argument("--version", help="Tag of the default limitador image")

    s_get = sub.add_parser("get", help="Show one object")
    s_get.add_argument("kind", help="Limitador, Service or Deployment")
    s_get.add_argument("name")
    s_get.add_argument("--namespace", default="default")

    s_list = sub.add_parser("list", help="List objects of a kind")
    s_list.add_argument("kind")
    s_list.add_argument("--namespace")

    s_del = sub.add_parser("delete", help="Delete a Limitador (children cascade)")
    s_del.add_argument("name")
    s_del.add_argument("--namespace", default="default")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_ctl = sub.add_parser("controller", help="Run a controller against the API (run the API with LRO_RUN_CONTROLLER=0)")
    s_ctl.add_argument("--workers", type=int, default=settings.workers)
    s_ctl.add_argument("--resync-interval-s", type=float, default=settings.resync_interval_s)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "controller":
        logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        return run_controller(base, workers=args.workers, resync_interval_s=args.resync_interval_s)

    if args.cmd == "apply":
        r = apply_limitador(base, args)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "get":
        r = requests.get(f"{base}/apis/{args.kind}/{args.namespace}/{args.name}", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "list":
        params = {"namespace": args.namespace} if args.namespace else None
        r = requests.get(f"{base}/apis/{args.kind}", params=params, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "delete":
        r = requests.delete(f"{base}/apis/Limitador/{args.namespace}/{args.name}", timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
