from fastapi import HTTPException, Request

from ..control import PlantNode


def get_node(request: Request) -> PlantNode:
    node = getattr(request.app.state, "node", None)
    if node is None:
        raise HTTPException(status_code=503, detail="node not started")
    return node
