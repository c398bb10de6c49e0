"""ASGI entrypoint for the inspection capture API."""

from inspection_capture.api.app import create_app
from inspection_capture.containers import build_container

app = create_app(build_container())
