"""Liveness endpoint."""

from fastapi import APIRouter, Depends

from qrpay.api.checkout import get_gateway
from qrpay.gateway.base import PaymentGateway

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(gateway: PaymentGateway = Depends(get_gateway)):
    return {"status": "ok", "gateway": gateway.name}
