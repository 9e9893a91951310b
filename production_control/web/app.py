"""FastAPI JSON interface for the production control core."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StrictInt

from ..allocation import SequenceCandidate
from ..config import Settings, configure_logging
from ..domain import AlertSeverity, LineStatus
from ..errors import ErrorKind, ProductionError
from ..history import SYSTEM_USER
from ..services import ProductionService

logger = logging.getLogger(__name__)

HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PRECONDITION: 409,
    ErrorKind.CAPACITY_EXHAUSTED: 409,
    ErrorKind.PERSISTENCE: 503,
}


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AllocationRequest(CamelModel):
    order_id: str = Field(alias="orderId")
    priority: StrictInt = 0
    material_type: Optional[str] = Field(default=None, alias="materialType")
    estimated_hours: Optional[float] = Field(default=None, alias="estimatedHours")


class LineCreate(CamelModel):
    name: str
    capacity: StrictInt


class LineStatusUpdate(CamelModel):
    status: LineStatus


class OrderCreate(CamelModel):
    reference: str
    customer: str
    priority: StrictInt = 0
    material_type: Optional[str] = Field(default=None, alias="materialType")
    estimated_hours: Optional[float] = Field(default=None, alias="estimatedHours")


class SequenceItem(CamelModel):
    id: str
    customer: str
    priority: StrictInt = 0
    estimated_hours: Optional[float] = Field(default=None, alias="estimatedHours")
    materials_available: bool = Field(default=True, alias="materialsAvailable")
    reference: Optional[str] = None
    material_type: Optional[str] = Field(default=None, alias="materialType")

    def to_candidate(self) -> SequenceCandidate:
        return SequenceCandidate(
            id=self.id,
            customer=self.customer,
            priority=self.priority,
            estimated_hours=self.estimated_hours,
            materials_available=self.materials_available,
            reference=self.reference,
            material_type=self.material_type,
        )


class SequenceRequest(CamelModel):
    orders: List[SequenceItem]
    auto_create: bool = Field(default=False, alias="autoCreate")


class OperatorAssignment(CamelModel):
    operator_id: Optional[str] = Field(default=None, alias="operatorId")


class StepData(CamelModel):
    data: Dict[str, Any]


class StepPhoto(CamelModel):
    url: str


def create_app(
    settings: Optional[Settings] = None, service: Optional[ProductionService] = None
) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)
    service = service or ProductionService.from_settings(settings)

    app = FastAPI(title="Production Control")
    app.state.production_service = service

    @app.on_event("shutdown")
    async def shutdown_event() -> None:  # pragma: no cover - framework hook
        service.close()

    @app.exception_handler(ProductionError)
    async def production_error_handler(request: Request, exc: ProductionError):
        status = HTTP_STATUS_BY_KIND.get(exc.kind, 500)
        logger.info("%s %s -> %d %s", request.method, request.url.path, status, exc.kind.value)
        return JSONResponse(jsonable_encoder(exc.to_dict()), status_code=status)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        body = {
            "success": False,
            "kind": ErrorKind.VALIDATION.value,
            "error": "Malformed request",
            "details": {"errors": exc.errors()},
        }
        return JSONResponse(jsonable_encoder(body), status_code=400)

    def user(x_user_id: Optional[str]) -> str:
        return x_user_id or SYSTEM_USER

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------
    @app.get("/lines")
    async def list_lines():
        return [line.to_dict() for line in service.line_occupancy()]

    @app.post("/lines", status_code=201)
    async def register_line(payload: LineCreate, x_user_id: Optional[str] = Header(None)):
        return service.register_line(payload.name, payload.capacity, acting_user=user(x_user_id))

    @app.patch("/lines/{line_id}/status")
    async def set_line_status(
        line_id: str, payload: LineStatusUpdate, x_user_id: Optional[str] = Header(None)
    ):
        return service.set_line_status(line_id, payload.status, acting_user=user(x_user_id))

    # ------------------------------------------------------------------
    # Orders and allocation
    # ------------------------------------------------------------------
    @app.post("/orders", status_code=201)
    async def create_order(payload: OrderCreate, x_user_id: Optional[str] = Header(None)):
        return service.create_order(
            payload.reference,
            payload.customer,
            payload.priority,
            material_type=payload.material_type,
            estimated_hours=payload.estimated_hours,
            acting_user=user(x_user_id),
        )

    @app.get("/orders/{order_id}")
    async def get_order(order_id: str):
        return service.get_order(order_id)

    @app.get("/orders/{order_id}/steps")
    async def order_steps(order_id: str):
        return service.steps_for(order_id)

    @app.get("/orders/{order_id}/history")
    async def order_history(order_id: str):
        service.get_order(order_id)
        return service.history_for(order_id)

    @app.post("/orders/{order_id}/advance")
    async def advance_order(order_id: str, x_user_id: Optional[str] = Header(None)):
        return service.advance_order_status(order_id, acting_user=user(x_user_id))

    @app.post("/allocations")
    async def allocate(payload: AllocationRequest, x_user_id: Optional[str] = Header(None)):
        result = service.allocate_order(
            payload.order_id,
            payload.priority,
            material_type=payload.material_type,
            estimated_hours=payload.estimated_hours,
            acting_user=user(x_user_id),
        )
        return result.to_dict()

    @app.post("/sequences")
    async def sequence(payload: SequenceRequest, x_user_id: Optional[str] = Header(None)):
        result = service.sequence_orders(
            [item.to_candidate() for item in payload.orders],
            auto_create=payload.auto_create,
            acting_user=user(x_user_id),
        )
        return result.to_dict()

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    @app.post("/steps/{step_id}/advance")
    async def advance_step(step_id: str, x_user_id: Optional[str] = Header(None)):
        return service.advance_step(step_id, acting_user=user(x_user_id))

    @app.put("/steps/{step_id}/operator")
    async def assign_operator(
        step_id: str, payload: OperatorAssignment, x_user_id: Optional[str] = Header(None)
    ):
        return service.assign_operator(
            step_id, payload.operator_id, acting_user=user(x_user_id)
        )

    @app.post("/steps/{step_id}/data")
    async def record_step_data(
        step_id: str, payload: StepData, x_user_id: Optional[str] = Header(None)
    ):
        return service.record_step_data(step_id, payload.data, acting_user=user(x_user_id))

    @app.post("/steps/{step_id}/photos")
    async def add_step_photo(
        step_id: str, payload: StepPhoto, x_user_id: Optional[str] = Header(None)
    ):
        return service.add_step_photo(step_id, payload.url, acting_user=user(x_user_id))

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------
    @app.get("/alerts")
    async def open_alerts(severity: Optional[AlertSeverity] = None):
        return service.open_alerts(severity)

    @app.post("/alerts/{alert_id}/resolve")
    async def resolve_alert(alert_id: str, x_user_id: Optional[str] = Header(None)):
        return service.resolve_alert(alert_id, acting_user=user(x_user_id))

    return app


__all__ = ["create_app"]
