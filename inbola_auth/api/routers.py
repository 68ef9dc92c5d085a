from fastapi import APIRouter
from inbola_auth.auth.routes import auth_router
from inbola_auth.common.constants import VERSION_PREFIX
from inbola_auth.common.routes import home_router


public_routers = APIRouter(prefix=VERSION_PREFIX)

public_routers.include_router(auth_router, prefix="/auth", tags=["auth"])
public_routers.include_router(home_router, tags=["home"])
