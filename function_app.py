import os
import logging
import azure.functions as func

from src.function_blueprints.http_generate_post import bp as generate_post_bp
from src.function_blueprints.http_trace_status import bp as trace_status_bp

app = func.FunctionApp()


def _configure_logging() -> None:
    lvl = (os.getenv("AZURE_SDK_LOG_LEVEL") or "").upper()
    if lvl:
        level = getattr(logging, lvl, logging.INFO)
        logging.getLogger("azure").setLevel(level)
        logging.getLogger("azure.cosmos").setLevel(level)
    app_level = (os.getenv("AMPLIFY_LOG_LEVEL") or "INFO").upper()
    logging.getLogger("amplifyme").setLevel(getattr(logging, app_level, logging.INFO))


_configure_logging()

app.register_functions(generate_post_bp)
app.register_functions(trace_status_bp)
