from hookguard.server.app import build_pipeline, create_app, log_event_handler, run_server

__all__ = ["build_pipeline", "create_app", "log_event_handler", "run_server"]
