from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from ..deps import get_node
from ...control import PlantNode
from ...uploads import latest_snapshot

router = APIRouter(prefix="/upload", tags=["uploads"])


@router.post("/capture")
def api_capture_now(node: PlantNode = Depends(get_node)):
    if node.uploader is None:
        raise HTTPException(status_code=400, detail="uploads not configured")
    if not node.capture_now():
        raise HTTPException(status_code=409, detail="an upload is already in flight")
    return {"status": "queued"}


@router.get("/last")
def api_last_upload(node: PlantNode = Depends(get_node)):
    if node.uploader is None or node.uploader.last_outcome is None:
        return {"status": "none", "busy": bool(node.uploader and node.uploader.busy)}
    return {"status": "done", "busy": node.uploader.busy, **node.uploader.last_outcome.as_dict()}


@router.get("/snapshot/latest")
def api_latest_snapshot(node: PlantNode = Depends(get_node)):
    """Most recent locally stored capture, as image/jpeg."""
    if node.uploader is None or node.uploader.snapshot_dir is None:
        raise HTTPException(status_code=404, detail="snapshots disabled")
    path = latest_snapshot(node.uploader.snapshot_dir)
    if path is None:
        raise HTTPException(status_code=404, detail="no snapshot yet")
    return FileResponse(path, media_type="image/jpeg", filename=path.name)
