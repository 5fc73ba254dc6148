from fastapi import Header, HTTPException, Request

from syncbridge.context import EngineContext


def get_context(request: Request) -> EngineContext:
    """Dependency for the engine context built in the app lifespan."""
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return context


async def get_user_id(x_user_id: str = Header(default="")) -> str:
    """
    Caller identity. Token verification happens in front of this service;
    here the user id arrives in the X-User-Id header.
    """
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return user_id
