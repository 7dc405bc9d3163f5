from fastapi import APIRouter, Request

router = APIRouter()

@router.get("/health")
@router.get("/{region}/health")
async def health(request: Request, region: str = None):
    consumer = request.app.state.consumer
    return {
        "status": "ok",
        "region": consumer.region,
        "replication": "running" if consumer.is_running else "stopped",
    }
