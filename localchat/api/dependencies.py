"""FastAPI dependencies shared by the routers."""
from fastapi import Request

from localchat.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    """The service container built at startup."""
    return request.app.state.runtime
