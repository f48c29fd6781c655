# cupos/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ===== App =====
    APP_NAME: str = "cupos"
    ENV: str = "dev"
    # TZ local de la red de clínicas
    TIMEZONE: str = "America/Lima"

    # ===== DB =====
    # En producción define DATABASE_URL con tu Postgres. Local puede caer a SQLite.
    DATABASE_URL: str = "sqlite:///./cupos.db"

    DB_POOL_SIZE: int = 2
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # 30 min

    # ===== Twilio =====
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_WHATSAPP_FROM: Optional[str] = None
    TWILIO_SMS_FROM: Optional[str] = None

    # Simulación (True = no envía mensajes reales)
    DRY_RUN: bool = False

    # Código de país que se antepone al enviar (Perú)
    PHONE_COUNTRY_CODE: str = "51"

    # ===== Lista de espera =====
    # Minutos extra tras la expiración en los que una respuesta aún se honra.
    # Lo leen tanto el router de respuestas como el barrido de ofertas.
    OFFER_GRACE_MINUTES: int = 30
    WAITLIST_SWEEP_MINUTES: int = 5
    SCHEDULER_ENABLED: bool = True
    # Recordatorio 24h antes de cada cita pendiente o confirmada (job cada hora)
    REMINDERS_ENABLED: bool = True
    REMINDER_CHANNEL: str = "whatsapp"

    # Cache de configuraciones de negocio (tabla settings)
    CONFIG_CACHE_TTL_SECONDS: int = 300

    # ===== Admin =====
    ADMIN_TOKEN: Optional[str] = None

    def model_post_init(self, __context) -> None:
        """
        Normaliza valores que suelen llegar con espacios desde el panel de
        variables de entorno.
        """
        self.PHONE_COUNTRY_CODE = (self.PHONE_COUNTRY_CODE or "").strip().lstrip("+")
        if self.OFFER_GRACE_MINUTES < 0:
            self.OFFER_GRACE_MINUTES = 0
        if self.WAITLIST_SWEEP_MINUTES < 1:
            self.WAITLIST_SWEEP_MINUTES = 1


settings = Settings()
