from celery import shared_task
from flask import current_app

from deploywatch.extensions import db
from deploywatch.incident.agent import run_agent


@shared_task()
def poll_logs():
    """
    Poll the latest deployment's logs and notify new incidents.

    :return: dict
    """
    return run_agent(current_app.extensions["incident"], db.session)
