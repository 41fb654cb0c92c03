from masterlink.gateway.api.v1.mastering import router as mastering_router
from masterlink.gateway.api.v1.probe import router as probe_router
from masterlink.gateway.api.v1.uploads import router as uploads_router

__all__ = ["routers"]
routers = [uploads_router, mastering_router, probe_router]
