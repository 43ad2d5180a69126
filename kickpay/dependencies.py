"""FastAPI dependencies shared by routers."""

from fastapi import Request

from kickpay.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
