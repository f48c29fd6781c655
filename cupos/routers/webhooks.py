# cupos/routers/webhooks.py
from __future__ import annotations
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from twilio.twiml.messaging_response import MessagingResponse

from ..services.waitlist import WaitlistEngine, get_waitlist_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

RETRY_MESSAGE = "Error al procesar su respuesta. Por favor, intente nuevamente."


def _twiml(text: str, status_code: int = 200) -> Response:
    resp = MessagingResponse()
    resp.message(text)
    return Response(content=str(resp), media_type="text/xml", status_code=status_code)


async def _read_payload(request: Request) -> tuple[str, str]:
    # Twilio envía application/x-www-form-urlencoded; se acepta JSON para pruebas
    if request.headers.get("content-type", "").startswith("application/json"):
        data = await request.json()
    else:
        data = dict(await request.form())
    sender = data.get("From") or data.get("from") or ""
    body = data.get("Body") or data.get("body") or ""
    return str(sender).strip(), str(body)


async def _handle(request: Request, engine: WaitlistEngine, channel: str) -> Response:
    sender, body = await _read_payload(request)
    logger.info("[%s IN] from=%s body=%r", channel.upper(), sender, body)
    if not sender or not body.strip():
        raise HTTPException(status_code=400, detail="From y Body son requeridos")

    try:
        result = await run_in_threadpool(engine.handle_reply, sender, body)
    except SQLAlchemyError:
        logger.exception("Error de base de datos procesando respuesta de %s", sender)
        return _twiml(RETRY_MESSAGE, status_code=503)

    logger.info("Resultado respuesta %s: ok=%s code=%s", sender, result.ok, result.code)
    return _twiml(result.text or "Su respuesta ha sido procesada.")


@router.get("/twilio/sms/test")
def webhook_test():
    return {"status": "ok", "message": "Webhook endpoint está funcionando", "timestamp": datetime.utcnow().isoformat()}


@router.post("/twilio/sms")
async def sms_webhook(request: Request, engine: WaitlistEngine = Depends(get_waitlist_engine)):
    return await _handle(request, engine, "sms")


@router.post("/twilio/whatsapp")
async def whatsapp_webhook(request: Request, engine: WaitlistEngine = Depends(get_waitlist_engine)):
    return await _handle(request, engine, "whatsapp")
