# cupos/errors.py
"""
Errores del motor de reasignación de cupos.

Todos se recuperan dentro del motor y se convierten en un resultado
estructurado (mensaje al paciente o log). Sólo los errores de base de datos
(SQLAlchemyError) se propagan al llamador.
"""


class WaitlistError(Exception):
    code = "WAITLIST_ERROR"
    user_message = "No se pudo procesar su respuesta. Por favor, contacte con el centro médico."

    def __init__(self, detail: str | None = None, user_message: str | None = None):
        super().__init__(detail or self.code)
        if user_message:
            self.user_message = user_message


class NoCandidate(WaitlistError):
    code = "NO_CANDIDATE"
    user_message = "No hay pacientes en lista de espera para este cupo."


class ProfessionalUnavailable(WaitlistError):
    code = "PROFESSIONAL_UNAVAILABLE"
    user_message = "Lo sentimos, ese horario ya no está disponible. Continuará en la lista de espera."


class SlotConflict(WaitlistError):
    code = "SLOT_CONFLICT"
    user_message = "Lo sentimos, ese horario ya no está disponible. Continuará en la lista de espera."


class OfferExpiredOrNotFound(WaitlistError):
    code = "EXPIRED_OR_NOT_FOUND"
    user_message = (
        "No se encontró una oferta activa o ya expiró. "
        "Por favor, espere una nueva notificación o contacte con el centro médico."
    )


class OfferNotActive(WaitlistError):
    code = "OFFER_NOT_ACTIVE"
    user_message = "Esta oferta ya fue procesada. Por favor, espere una nueva notificación."


class OfferAlreadyActive(WaitlistError):
    code = "OFFER_ALREADY_ACTIVE"


class UnrecognizedReply(WaitlistError):
    code = "UNRECOGNIZED"
    user_message = "Respuesta no reconocida. Responda ACEPTAR para reservar o IGNORAR para continuar en lista de espera."


class DispatchFailure(WaitlistError):
    code = "DISPATCH_FAILURE"
