"""Limitador Reconciliation Operator (LRO).

Level-triggered controller that converges the children of a Limitador
resource:
 - a headless Service exposing the http and grpc listeners (create-only)
 - a Deployment whose replica count and image follow the Limitador spec

Children carry an owner reference to their Limitador; deleting the owner
cascades through the object store, never through the controller.
"""
