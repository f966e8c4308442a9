from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_node
from ...control import PlantNode

router = APIRouter(prefix="/pump", tags=["pumps"])


@router.get("")
def api_pump_status(node: PlantNode = Depends(get_node)):
    return node.pump.status()


@router.post("/start")
def api_pump_start(node: PlantNode = Depends(get_node)):
    try:
        started = node.pump.start()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"started": started, **node.pump.status()}


@router.post("/stop")
def api_pump_stop(node: PlantNode = Depends(get_node)):
    try:
        node.pump.stop()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return node.pump.status()
