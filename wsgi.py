import os

from dotenv import load_dotenv

load_dotenv()

from payrecon import create_app  # noqa: E402

config = os.getenv("APP_ENV", "production")

app = create_app(config)
