from __future__ import annotations

from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from lro import db
from lro.controller import Controller
from lro.errors import ContractViolation
from lro.models import ObjectRef, Resource, kind_for, parse_object, to_wire
from lro.settings import settings
from lro.store import AlreadyExists, Conflict, NotFound, Store, StoreError, StoreUnavailable

STATUS_BY_ERROR: dict[type[StoreError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    AlreadyExists: status.HTTP_409_CONFLICT,
    Conflict: status.HTTP_409_CONFLICT,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_controller(request: Request) -> Controller | None:
    return request.app.state.controller


def _kind(name: str) -> type[Resource]:
    try:
        return kind_for(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown kind '{name}'")


def _parse(kind: type[Resource], body: dict[str, Any]) -> Resource:
    body.setdefault("kind", kind.KIND)
    if body["kind"] != kind.KIND:
        raise HTTPException(status_code=400, detail=f"Body kind {body['kind']!r} does not match {kind.KIND}")
    try:
        return parse_object(body)
    except (ValidationError, ContractViolation) as e:
        raise HTTPException(status_code=422, detail=str(e))


def _notify(controller: Controller | None, obj: Resource) -> None:
    if controller is not None:
        controller.enqueue(obj)


def create_app(
    store: Store | None = None,
    controller: Controller | None = None,
    db_path: str | None = None,
    run_controller: bool = settings.run_controller,
) -> FastAPI:
    """Build the API. Without ``store`` the sqlite store at ``db_path`` is used."""
    app = FastAPI(title="Limitador Reconciliation Operator")
    app.state.store = store
    app.state.controller = controller
    app.state.db_path = db_path

    @app.on_event("startup")
    def startup() -> None:
        db.init_db(db_path)
        db.configure_logging(path=db_path)
        if app.state.store is None:
            app.state.store = db.SqliteStore(db_path)
        if app.state.controller is None and run_controller:
            app.state.controller = Controller(app.state.store)
        if app.state.controller is not None:
            app.state.controller.start()
            app.state.controller.resync()

    @app.on_event("shutdown")
    def shutdown() -> None:
        if app.state.controller is not None:
            app.state.controller.stop()

    @app.exception_handler(StoreError)
    def store_error(request: Request, exc: StoreError) -> JSONResponse:
        code = STATUS_BY_ERROR.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
        return JSONResponse(status_code=code, content={"detail": str(exc), "reason": exc.reason})

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/apis/{kind}")
    def list_objects(kind: str, namespace: str | None = None, store: Store = Depends(get_store)) -> dict[str, Any]:
        cls = _kind(kind)
        return {"kind": f"{cls.KIND}List", "items": [to_wire(o) for o in store.list(cls, namespace)]}

    @app.get("/apis/{kind}/{namespace}/{name}")
    def get_object(kind: str, namespace: str, name: str, store: Store = Depends(get_store)) -> dict[str, Any]:
        return to_wire(store.get(_kind(kind), ObjectRef(namespace, name)))

    @app.post("/apis/{kind}", status_code=status.HTTP_201_CREATED)
    def create_object(
        kind: str,
        body: dict[str, Any],
        store: Store = Depends(get_store),
        controller: Controller | None = Depends(get_controller),
    ) -> dict[str, Any]:
        created = store.create(_parse(_kind(kind), body))
        _notify(controller, created)
        return to_wire(created)

    @app.put("/apis/{kind}/{namespace}/{name}")
    def update_object(
        kind: str,
        namespace: str,
        name: str,
        body: dict[str, Any],
        store: Store = Depends(get_store),
        controller: Controller | None = Depends(get_controller),
    ) -> dict[str, Any]:
        obj = _parse(_kind(kind), body)
        if obj.ref != ObjectRef(namespace, name):
            raise HTTPException(status_code=400, detail=f"Body identity {obj.ref} does not match {namespace}/{name}")
        updated = store.update(obj)
        _notify(controller, updated)
        return to_wire(updated)

    @app.delete("/apis/{kind}/{namespace}/{name}")
    def delete_object(
        kind: str,
        namespace: str,
        name: str,
        store: Store = Depends(get_store),
        controller: Controller | None = Depends(get_controller),
    ) -> dict[str, Any]:
        cls = _kind(kind)
        ref = ObjectRef(namespace, name)
        obj = store.get(cls, ref)
        store.delete(cls, ref)
        # A deleted child is recreated by its owner's next pass.
        _notify(controller, obj)
        return {"kind": cls.KIND, "namespace": namespace, "name": name, "status": "deleted"}

    @app.get("/events")
    def events(limit: int = 100) -> list[dict[str, Any]]:
        return db.latest_events(limit=max(1, min(1000, limit)), path=app.state.db_path)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
