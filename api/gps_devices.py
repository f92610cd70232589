"""
GPS device management endpoints
Assign trackers to vehicles and query live positions
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.schemas import (
    DeleteResponse,
    DeviceListResponse,
    DeviceRegisterRequest,
    DeviceResponse,
    PositionResponse,
    RegistryStatsResponse,
    UnassignResponse,
    VehicleStatusResponse,
)
from services.device_registry import AlreadyAssigned, DeviceNotFound, DeviceRegistry

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/gps", tags=["GPS Devices"])


def get_registry(request: Request) -> DeviceRegistry:
    registry = getattr(request.app.state, 'registry', None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Device registry not initialized")
    return registry


@router.post("/devices", response_model=DeviceResponse, status_code=201)
async def register_device(
    body: DeviceRegisterRequest,
    registry: DeviceRegistry = Depends(get_registry)
):
    """Assign a GPS device to a vehicle"""
    try:
        record = registry.register(body.device_id, body.vehicle_id, body.name)
    except AlreadyAssigned as e:
        logger.warning(f"Rejected device registration: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return DeviceResponse.from_record(record, registry.is_online(record.device_id))


@router.get("/devices", response_model=DeviceListResponse)
async def list_devices(registry: DeviceRegistry = Depends(get_registry)):
    devices = [
        DeviceResponse.from_record(record, registry.is_online(record.device_id))
        for record in registry.list_devices()
    ]
    return DeviceListResponse(devices=devices, total=len(devices))


@router.get("/devices/{device_id}", response_model=DeviceResponse)
async def get_device(device_id: str, registry: DeviceRegistry = Depends(get_registry)):
    try:
        record = registry.require(device_id)
    except DeviceNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return DeviceResponse.from_record(record, registry.is_online(device_id))


@router.delete("/devices/{device_id}", response_model=DeleteResponse)
async def delete_device(device_id: str, registry: DeviceRegistry = Depends(get_registry)):
    """Remove a device record; success is False when it did not exist"""
    return DeleteResponse(success=registry.unregister(device_id))


@router.post("/vehicles/{vehicle_id}/unassign", response_model=UnassignResponse)
async def unassign_vehicle(vehicle_id: str, registry: DeviceRegistry = Depends(get_registry)):
    """Release whichever devices track the vehicle. Not an error when none do."""
    released = registry.unassign(vehicle_id)
    return UnassignResponse(
        vehicle_id=vehicle_id,
        released_devices=[record.device_id for record in released],
    )


@router.get("/vehicles/{vehicle_id}/status", response_model=VehicleStatusResponse)
async def vehicle_status(vehicle_id: str, registry: DeviceRegistry = Depends(get_registry)):
    status = registry.status_for(vehicle_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"No GPS device assigned to vehicle {vehicle_id}")
    return VehicleStatusResponse.from_status(vehicle_id, status)


@router.get("/position/{vehicle_id}", response_model=PositionResponse)
async def vehicle_position(vehicle_id: str, registry: DeviceRegistry = Depends(get_registry)):
    """Latest cached position of the device tracking this vehicle"""
    record = registry.find_by_vehicle(vehicle_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No GPS device assigned to vehicle {vehicle_id}")

    report = registry.latest_position(record.device_id)
    if report is None:
        raise HTTPException(status_code=404, detail=f"No position received yet for vehicle {vehicle_id}")
    return PositionResponse.from_report(report, vehicle_id)


@router.get("/stats", response_model=RegistryStatsResponse)
async def registry_stats(registry: DeviceRegistry = Depends(get_registry)):
    return RegistryStatsResponse(**registry.get_stats())
