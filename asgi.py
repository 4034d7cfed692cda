from starlette.applications import Starlette
from starlette.responses import PlainTextResponse
from starlette.routing import Mount, Route

from rad_security_mcp.log import configure_logging
from rad_security_mcp.server import mcp
from rad_security_mcp.settings import settings

configure_logging(settings.log_level)

mcp_app = mcp.http_app(path="/mcp")


async def health(_):
    return PlainTextResponse("ok")

# Put /health BEFORE the catch-all Mount("/")
app = Starlette(
    routes=[
        Route("/health", health),
        Mount("/", app=mcp_app),
    ],
    lifespan=mcp_app.lifespan,
)
