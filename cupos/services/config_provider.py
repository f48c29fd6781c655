# cupos/services/config_provider.py
"""
Configuraciones de negocio (tabla ``settings``) con cache TTL.

El proveedor se construye una vez y se inyecta en el motor; las pruebas usan
``StaticConfigProvider`` con un dict fijo.
"""
from __future__ import annotations
import json
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models import Setting

logger = logging.getLogger(__name__)

class BusinessConfig(BaseModel):
    """Tipos y valores por defecto de las configuraciones de negocio."""

    model_config = ConfigDict(extra="forbid")

    # Lista de espera
    auto_offer_enabled: bool = True
    tiempo_max_oferta: int = Field(default=30, ge=1, le=1440)
    prioridad_adultos_mayores: bool = True
    prioridad_urgentes: bool = True
    prioridad_tiempo_espera: bool = False
    # Mensajes
    mensaje_oferta_cupo: str = (
        "Hola {nombre}, hay un cupo disponible el {fecha} a las {hora} con {doctor} "
        "({especialidad}). Responda ACEPTAR en {tiempo} min o IGNORAR."
    )


DEFAULT_CONFIG: Dict[str, Any] = BusinessConfig().model_dump()


def validate_values(values: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Convierte cada valor al tipo de su clave ("false" -> False, "45" -> 45).
    Levanta ValueError con claves desconocidas o valores que no encajan.
    """
    invalid = [k for k in values if k not in DEFAULT_CONFIG]
    if invalid:
        raise ValueError(f"Claves inválidas: {', '.join(sorted(invalid))}")
    try:
        parsed = BusinessConfig.model_validate(dict(values))
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise ValueError(f"Valores inválidos: {', '.join(fields)}") from None
    return parsed.model_dump(include=set(values))


def convert_value(raw: Optional[str], kind: str) -> Any:
    if raw is None:
        return None
    if kind == "boolean":
        return str(raw).strip().lower() in ("true", "1", "yes", "si", "sí")
    if kind == "number":
        num = float(raw)
        return int(num) if num.is_integer() else num
    if kind == "json":
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return str(raw)


def infer_type(value: Any) -> str:
    # bool antes que int: True es instancia de int
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (dict, list)):
        return "json"
    return "string"


def serialize_value(value: Any, kind: str) -> str:
    if kind == "json":
        return json.dumps(value, ensure_ascii=False)
    if kind == "boolean":
        return "true" if value else "false"
    return str(value)


class TTLCache:
    """Cache de un solo valor con vencimiento."""

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._value: Optional[Dict[str, Any]] = None
        self._stamp: float = 0.0

    def get(self) -> Optional[Dict[str, Any]]:
        if self._value is None:
            return None
        if self._clock() - self._stamp >= self._ttl:
            self._value = None
            return None
        return self._value

    def set(self, value: Dict[str, Any]) -> None:
        self._value = value
        self._stamp = self._clock()

    def invalidate(self) -> None:
        self._value = None


class ConfigProvider:
    """Lee las configuraciones desde BD, con defaults y cache."""

    def __init__(self, session_factory: Callable[[], Session], ttl_seconds: Optional[int] = None):
        self._session_factory = session_factory
        ttl = settings.CONFIG_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._cache = TTLCache(ttl_seconds=ttl)
        # Última lectura exitosa; sólo se usa mientras la BD no responde
        self._last_good: Optional[Dict[str, Any]] = None

    def _load(self) -> Dict[str, Any]:
        config = dict(DEFAULT_CONFIG)
        db = self._session_factory()
        try:
            rows = db.query(Setting).all()
        finally:
            db.close()
        for row in rows:
            if row.key not in DEFAULT_CONFIG:
                continue
            try:
                config.update(validate_values({row.key: convert_value(row.value, row.type)}))
            except ValueError:
                logger.warning("Configuración %s con valor inválido %r; se usa el valor por defecto", row.key, row.value)
        return config

    def get_all(self) -> Dict[str, Any]:
        cached = self._cache.get()
        if cached is not None:
            return dict(cached)
        try:
            config = self._load()
        except SQLAlchemyError:
            if self._last_good is None:
                raise
            # No se cachea: la siguiente lectura vuelve a intentar con la BD
            logger.warning("No se pudieron leer configuraciones; usando la última lectura válida", exc_info=True)
            return dict(self._last_good)
        self._last_good = config
        self._cache.set(config)
        return dict(config)

    def get(self, key: str, default: Any = None) -> Any:
        value = self.get_all().get(key)
        if value is None:
            return DEFAULT_CONFIG.get(key, default)
        return value

    def invalidate(self) -> None:
        self._cache.invalidate()

    def update(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        values = validate_values(values)

        db = self._session_factory()
        try:
            for key, value in values.items():
                kind = infer_type(value)
                row = db.get(Setting, key)
                if row is None:
                    row = Setting(key=key)
                    db.add(row)
                row.type = kind
                row.value = serialize_value(value, kind)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

        self.invalidate()
        logger.info("Configuraciones actualizadas: %s", ", ".join(sorted(values)))
        return self.get_all()

    def restore_defaults(self) -> Dict[str, Any]:
        return self.update(DEFAULT_CONFIG)


class StaticConfigProvider:
    """Proveedor en memoria (pruebas y scripts)."""

    def __init__(self, overrides: Optional[Mapping[str, Any]] = None):
        self._values = dict(DEFAULT_CONFIG)
        self._values.update(overrides or {})

    def get_all(self) -> Dict[str, Any]:
        return dict(self._values)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, DEFAULT_CONFIG.get(key, default))

    def invalidate(self) -> None:
        pass

    def update(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        self._values.update(validate_values(values))
        return self.get_all()

    def restore_defaults(self) -> Dict[str, Any]:
        self._values = dict(DEFAULT_CONFIG)
        return self.get_all()
