"""
FastAPI operational interface for FlightWatch
"""
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flightwatch import __version__
from flightwatch.config import config
from flightwatch.models.schemas import (
    FlightMonitoringView, IntervalUpdateRequest, MonitoringStatus, ResolveAmbiguityRequest, utc_now
)
from flightwatch.services.scheduler import MonitoringScheduler
from flightwatch.utils.exceptions import ConfigurationInvalid, DataValidationException
from flightwatch.utils.logger import get_monitor_logger

web_logger = get_monitor_logger("web_interface")


def create_app(scheduler: Optional[MonitoringScheduler] = None, start_driver: bool = True) -> FastAPI:
    """
    Build the API around ``scheduler``; the production scheduler is wired
    from configuration at startup when none is given.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.scheduler is None:
            from flightwatch.bootstrap import build_scheduler
            app.state.scheduler = build_scheduler()
        if start_driver:
            app.state.scheduler.start()
        yield
        await app.state.scheduler.stop()

    app = FastAPI(
        title="FlightWatch - Flight Monitoring and Notification Service",
        description="Tracks upcoming flights and notifies passengers, volunteers and dashboard users",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_scheduler(request: Request) -> MonitoringScheduler:
        scheduler = request.app.state.scheduler
        if scheduler is None:
            raise HTTPException(status_code=503, detail="Monitoring is not initialised")
        return scheduler

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": utc_now().isoformat(),
            "version": __version__,
            "config_valid": config.validate()
        }

    @app.get("/api/monitoring/status", response_model=MonitoringStatus)
    async def monitoring_status(request: Request):
        return get_scheduler(request).get_status()

    @app.post("/api/monitoring/interval", response_model=MonitoringStatus)
    async def update_interval(body: IntervalUpdateRequest, request: Request):
        scheduler = get_scheduler(request)
        try:
            scheduler.set_interval(body.minutes)
        except ConfigurationInvalid as e:
            web_logger.warning("Rejected interval update", minutes=body.minutes, error=e.message)
            raise HTTPException(status_code=400, detail=e.message)
        return scheduler.get_status()

    @app.post("/api/monitoring/check-now", status_code=202)
    async def check_now(request: Request):
        """Start a forced poll; results arrive as ordinary alerts"""
        started = get_scheduler(request).trigger_manual_check()
        message = "Manual check started" if started else "A manual check is already in progress"
        return JSONResponse(status_code=202, content={"accepted": True, "started": started, "message": message})

    @app.get("/api/monitoring/flights", response_model=List[FlightMonitoringView])
    async def monitored_flights(request: Request):
        return get_scheduler(request).flight_views()

    @app.post("/api/monitoring/flights/{flight_id}/resolve", response_model=FlightMonitoringView)
    async def resolve_flight(flight_id: str, body: ResolveAmbiguityRequest, request: Request):
        """Pick one of the provider's candidate flights for an ambiguous flight number"""
        scheduler = get_scheduler(request)
        try:
            scheduler.resolve_ambiguity(flight_id, body.provider_ident)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Flight {flight_id} is not being monitored")
        except DataValidationException as e:
            raise HTTPException(status_code=400, detail=e.message)
        return next(v for v in scheduler.flight_views() if v.flight_id == flight_id)

    return app


app = create_app()
