"""Status HTTP endpoint for running pipelines."""

from promstash.api.app import create_app, create_server

__all__ = ["create_app", "create_server"]
