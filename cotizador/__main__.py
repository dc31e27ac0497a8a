import uvicorn

from cotizador.config import settings


def main():
    uvicorn.run(
        "cotizador.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "local",
    )


if __name__ == "__main__":
    main()
