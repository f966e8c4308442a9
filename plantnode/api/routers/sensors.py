from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_node
from ..models import CalibrationUpdate, ThresholdUpdate
from ...control import PlantNode
from ... import config_store, master_log

router = APIRouter(prefix="/sensors", tags=["sensors"])


@router.get("/moisture")
def api_read_moisture(node: PlantNode = Depends(get_node)):
    try:
        return node.sensor.snapshot()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/calibration")
def api_get_calibration():
    return config_store.load_calibration()


@router.post("/calibration")
def api_set_calibration(req: CalibrationUpdate, node: PlantNode = Depends(get_node)):
    try:
        node.sensor.set_calibration(req.dry_raw, req.wet_raw)
        data = config_store.set_moisture_calibration(req.dry_raw, req.wet_raw)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

    master_log.record(
        "calibration_set",
        source="api.sensors.api_set_calibration",
        dry_raw=req.dry_raw,
        wet_raw=req.wet_raw,
    )
    return data


@router.post("/thresholds")
def api_set_thresholds(req: ThresholdUpdate, node: PlantNode = Depends(get_node)):
    try:
        node.sensor.set_thresholds(req.lower_pct, req.upper_pct)
        data = config_store.set_moisture_thresholds(req.lower_pct, req.upper_pct)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

    master_log.record(
        "thresholds_set",
        source="api.sensors.api_set_thresholds",
        lower_pct=req.lower_pct,
        upper_pct=req.upper_pct,
    )
    return data
