# -*- coding: utf-8 -*-

import multiprocessing
import os


def strtobool(value):
    return str(value).strip().lower() in ("1", "true", "t", "yes", "y", "on")


bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"
accesslog = "-"
errorlog = "-"
access_log_format = (
    "%(h)s %(l)s %(u)s %(t)s '%(r)s' %(s)s %(b)s '%(f)s' '%(a)s' in %(D)sµs"  # noqa: E501
)

# With errorlog='-' worker output ends up on container stderr.
capture_output = True

loglevel = os.getenv("LOG_LEVEL", "info").lower()

# Approval links block on the deploy hook, keep a few threads per worker.
worker_class = os.getenv("WEB_WORKER_CLASS", "gthread")
workers = int(os.getenv("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2))
threads = int(os.getenv("PYTHON_MAX_THREADS", 4))

reload = strtobool(os.getenv("WEB_RELOAD", "false"))

timeout = int(os.getenv("WEB_TIMEOUT", 120))
