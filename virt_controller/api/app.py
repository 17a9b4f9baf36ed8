"""
Node Controller API — FastAPI endpoints for operating the controller.

Exposes:
- Liveness
- Controller status and configuration
- Manual node enqueue / synchronous reconciliation
- Node health as seen from the local cache
- Recorded events
"""

from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from virt_controller.events.store import EventStore
from virt_controller.health.evaluator import evaluate_node
from virt_controller.reconciler.controller import NodeController


# --- Response Models ---

class EnqueueResponse(BaseModel):
    status: str
    node: str
    queue_depth: int


class NodeHealthResponse(BaseModel):
    node: str
    health: str
    heartbeat: Optional[str] = None
    schedulable: Optional[str] = None


# --- Application Factory ---

def create_app(
    controller: NodeController,
    event_store: Optional[EventStore] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Node Controller API",
        description="Keeps VirtualMachines consistent with node agent heartbeats",
        version="0.1.0",
    )

    es = event_store or controller.recorder

    app.state.controller = controller
    app.state.event_store = es

    @app.get("/healthz")
    def healthz():
        """Liveness probe."""
        return {"status": "ok"}

    # === CONTROLLER ===

    @app.get("/controller/status")
    def controller_status():
        """Current controller loop status."""
        return {
            "status": controller.status,
            "workers": controller.config.workers,
            "queue_depth": len(controller.queue),
            "caches": {
                cache.kind: {"synced": cache.has_synced(), "objects": len(cache)}
                for cache in controller.caches()
            },
        }

    @app.get("/controller/config")
    def get_controller_config():
        """Current controller configuration."""
        return controller.config.model_dump()

    # === NODES ===

    @app.post("/nodes/{name}/enqueue")
    def enqueue_node(name: str):
        """Schedule a reconciliation of one node."""
        controller.enqueue(name)
        return EnqueueResponse(status="enqueued", node=name, queue_depth=len(controller.queue))

    @app.post("/nodes/{name}/reconcile")
    def reconcile_node(name: str):
        """Run one reconciliation cycle now and return its outcome."""
        result = controller.reconcile(name)
        return {
            **result.model_dump(mode="json"),
            "succeeded": result.succeeded,
        }

    @app.get("/nodes/{name}/health")
    def node_health(name: str):
        """Health verdict for a cached node."""
        node = controller.node_cache.get(name)
        if not node:
            raise HTTPException(404, "Node not found")
        health = evaluate_node(node, controller.config.heartbeat_timeout_seconds)
        return NodeHealthResponse(
            node=name,
            health=health.value,
            heartbeat=node.heartbeat,
            schedulable=node.schedulable,
        )

    # === EVENTS ===

    @app.get("/events")
    def get_events(limit: int = 50):
        """Recent events."""
        if es is None:
            return []
        return [e.model_dump(mode="json") for e in es.query_recent(limit=limit)]

    @app.get("/events/{kind}/{name}")
    def get_object_events(kind: str, name: str, namespace: Optional[str] = None):
        """All events recorded against one object."""
        if es is None:
            return []
        return [
            e.model_dump(mode="json")
            for e in es.query_by_object(kind, name, namespace=namespace)
        ]

    return app
