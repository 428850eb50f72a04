import os

from schedule_api import create_app

app = create_app(os.getenv("APP_CONFIG"))
