from fastapi import APIRouter, Request

from property_listing.models import ReplicationLagResponse

router = APIRouter()


@router.get("/replication-lag", response_model=ReplicationLagResponse)
@router.get("/{region}/replication-lag", response_model=ReplicationLagResponse)
async def replication_lag(request: Request, region: str = None):
    lag = request.app.state.lag_monitor.current_lag_seconds()
    return {"lag_seconds": round(lag, 3)}
