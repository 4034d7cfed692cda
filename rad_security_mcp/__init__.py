from rad_security_mcp.server import mcp
from .log import configure_logging
from .settings import settings


def main():
    configure_logging(settings.log_level)
    if settings.mcp_transport_mode == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport=settings.mcp_transport_mode, host=settings.mcp_host, port=settings.mcp_port)


if __name__ == "__main__":
    main()
