"""ASGI entrypoint: `uvicorn user_service.main:app`."""
import os

from dotenv import load_dotenv

# Load env from the working directory's .env (not under pytest)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from user_service.app import create_app

app = create_app()
