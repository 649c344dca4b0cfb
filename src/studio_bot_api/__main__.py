import uvicorn

from .settings import get_settings


def main() -> None:
    """Run the webhook/API server."""
    settings = get_settings()

    uvicorn.run(
        "studio_bot_api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
