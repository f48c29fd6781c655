# cupos/routers/admin.py
from __future__ import annotations
from fastapi import APIRouter, Depends, Header, HTTPException
from datetime import datetime

from ..config import settings
from .. import schemas
from ..services.waitlist import WaitlistEngine, get_waitlist_engine

router = APIRouter(tags=["admin"])


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────
def _require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    expected = (settings.ADMIN_TOKEN or "").strip()
    provided = (x_admin_token or "").strip()
    if not expected:
        raise HTTPException(status_code=403, detail="ADMIN_TOKEN no configurado")
    if provided != expected:
        raise HTTPException(status_code=401, detail="Token inválido")


# ──────────────────────────────────────────────────────────────────────────────
# Básicos
# (recuerda: main.py monta este router con prefix="/admin")
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/ping")
def admin_ping():
    return {"ok": True, "ts": datetime.utcnow().isoformat()}


@router.get("/health")
def admin_health(engine: WaitlistEngine = Depends(get_waitlist_engine)):
    return {
        "ok": True,
        "app": settings.APP_NAME,
        "env": settings.ENV,
        "tz": settings.TIMEZONE,
        "grace_minutes": int(engine.offers.grace_window.total_seconds() // 60),
        "sweep_minutes": settings.WAITLIST_SWEEP_MINUTES,
        "ts": datetime.utcnow().isoformat(),
    }


# ──────────────────────────────────────────────────────────────────────────────
# Configuraciones de lista de espera
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/config", dependencies=[Depends(_require_admin)])
def admin_config(engine: WaitlistEngine = Depends(get_waitlist_engine)):
    return {"ok": True, "config": engine.config.get_all()}


@router.put("/config", dependencies=[Depends(_require_admin)])
def admin_config_update(req: schemas.ConfigUpdateRequest, engine: WaitlistEngine = Depends(get_waitlist_engine)):
    if not req.values:
        raise HTTPException(status_code=400, detail="Se requiere un objeto de configuraciones")
    try:
        config = engine.config.update(req.values)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "message": "Configuraciones actualizadas exitosamente", "config": config}


@router.post("/config/restore", dependencies=[Depends(_require_admin)])
def admin_config_restore(engine: WaitlistEngine = Depends(get_waitlist_engine)):
    config = engine.config.restore_defaults()
    return {"ok": True, "message": "Configuraciones restauradas a valores por defecto", "config": config}


@router.post("/config/invalidate", dependencies=[Depends(_require_admin)])
def admin_config_invalidate(engine: WaitlistEngine = Depends(get_waitlist_engine)):
    engine.config.invalidate()
    return {"ok": True, "message": "Cache de configuraciones invalidada."}


# ──────────────────────────────────────────────────────────────────────────────
# Barrido manual de ofertas vencidas
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/waitlist/sweep", response_model=schemas.SweepResponse, dependencies=[Depends(_require_admin)])
def admin_sweep(engine: WaitlistEngine = Depends(get_waitlist_engine)):
    return schemas.SweepResponse(reclaimed=engine.sweep())
