from typing import Optional


class AuraServiceError(Exception):
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        return {"error": type(self).__name__, "message": self.message}


class InvalidInputError(AuraServiceError):
    http_status = 400


class InvalidStateTransitionError(AuraServiceError):
    http_status = 409


class PermissionDeniedError(AuraServiceError):
    http_status = 403


class InsufficientAuraError(AuraServiceError):
    http_status = 400

    def __init__(self, required: int, available: int, message: Optional[str] = None):
        super().__init__(message or f"Insufficient Aura. Need {required}, have {available}")
        self.required = required
        self.available = available

    def to_response(self) -> dict:
        response = super().to_response()
        response["required"] = self.required
        response["available"] = self.available
        return response


class BankruptError(InsufficientAuraError):
    def __init__(self, required: int, available: int):
        super().__init__(
            required,
            available,
            "You are bankrupt! Wait for daily bonus or accept a callout to earn Aura.",
        )


class NotFoundError(AuraServiceError):
    http_status = 404


class UserNotFoundError(NotFoundError):
    pass


class BetNotFoundError(NotFoundError):
    pass


class ProofNotFoundError(NotFoundError):
    pass
