"""Run the mongo-notify gateway: python3 -m mongo_notify"""

import uvicorn

from mongo_notify.config import Settings


def main() -> None:
    settings = Settings()
    uvicorn.run("mongo_notify.api.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
