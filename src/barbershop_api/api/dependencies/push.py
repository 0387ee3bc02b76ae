from fastapi import HTTPException, Request, status

from barbershop_api.services.push import PushBackend


def get_optional_push_backend(request: Request) -> PushBackend | None:
    return getattr(request.app.state, "push_backend", None)


def get_push_backend(request: Request) -> PushBackend:
    backend = get_optional_push_backend(request)
    if backend is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Push notifications not configured",
        )
    return backend
