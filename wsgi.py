import os

# create_app() picks ProductionConfig from ENV unless FLASK_CONFIG says otherwise
os.environ.setdefault("ENV", "production")

from givecart import create_app  # noqa: E402

app = create_app()
