"""Structured JSON logging, optionally shipped to CloudWatch Logs."""

import logging
import sys

import boto3
import watchtower
from pythonjsonlogger import jsonlogger

SERVICE_NAME = "deploywatch"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps service context on every record."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["service"] = SERVICE_NAME


def setup_logging(app):
    """
    Configure JSON logging on stdout for the root and Flask loggers.

    When ``CLOUDWATCH_ENABLED`` is set, records at or above
    ``CLOUDWATCH_LOG_LEVEL`` are also sent to CloudWatch Logs.

    :param app: Flask application instance
    :return: Root logger
    """
    log_level = app.config.get("LOG_LEVEL", "INFO")

    logger = logging.getLogger()
    logger.setLevel(log_level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = CustomJsonFormatter(
        fmt="%(timestamp)s %(level)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if app.config.get("CLOUDWATCH_ENABLED"):
        logger.addHandler(_cloudwatch_handler(app, formatter))

    app.logger.handlers = logger.handlers
    app.logger.setLevel(log_level)
    app.logger.info(
        "Structured logging initialized",
        extra={"log_level": log_level, "format": "json"},
    )

    return logger


def _cloudwatch_handler(app, formatter):
    region = app.config.get("AWS_REGION", "us-east-1")
    log_group = app.config.get("CLOUDWATCH_LOG_GROUP", SERVICE_NAME)
    log_stream = app.config.get("CLOUDWATCH_LOG_STREAM", "app")
    level_name = app.config.get("CLOUDWATCH_LOG_LEVEL", "ERROR")

    handler = watchtower.CloudWatchLogHandler(
        log_group_name=log_group,
        log_stream_name=log_stream,
        boto3_client=boto3.client("logs", region_name=region),
        send_interval=10,
        create_log_group=True,
        create_log_stream=True,
    )
    handler.setLevel(getattr(logging, level_name.upper(), logging.ERROR))
    handler.setFormatter(formatter)

    logging.getLogger(__name__).info(
        "CloudWatch logging enabled → group=%s stream=%s level=%s",
        log_group,
        log_stream,
        level_name,
    )
    return handler
