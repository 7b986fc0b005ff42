import logging
import os

import uvicorn
from dotenv import load_dotenv


def main():
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    # settings are read at import time, after .env is loaded
    from fingerspell.api.app import app

    uvicorn.run(
        app,
        host=os.getenv("FINGERSPELL_HOST", "127.0.0.1"),
        port=int(os.getenv("FINGERSPELL_PORT", "8000")),
    )


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("Exit")
