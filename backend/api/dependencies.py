"""
Shared FastAPI dependencies

The app lifespan puts the ServiceBundle, the job queue and the broadcaster
on app.state; routers read them through these functions so tests can swap
them with app.dependency_overrides.
"""

from fastapi import HTTPException, Request

from config.settings import Settings, get_settings
from services.event_broadcaster import EventBroadcaster, broadcaster
from services.wiring import ServiceBundle


def get_services(request: Request) -> ServiceBundle:
    services = getattr(request.app.state, 'services', None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not available")
    return services


def get_job_queue(request: Request):
    """Redis job queue, or None when Redis is not connected"""
    return getattr(request.app.state, 'job_queue', None)


def get_broadcaster() -> EventBroadcaster:
    return broadcaster


def get_app_settings() -> Settings:
    return get_settings()
