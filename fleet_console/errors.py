class ConsoleError(RuntimeError):
    """Base for every error the console surfaces to an operator."""


class ValidationError(ConsoleError):
    pass


class ServiceError(ConsoleError):
    def __init__(self, message: str, *, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class UnreachableError(ServiceError):
    pass


class SessionInProgress(ConsoleError):
    pass


class TokenExpired(ConsoleError):
    def __init__(self) -> None:
        super().__init__("Installation token expired")


class TokenInvalid(ConsoleError):
    def __init__(self) -> None:
        super().__init__("Token no longer valid")
