import datetime


def utcnow():
    """
    Return the current UTC time as a naive datetime.

    All timestamp columns store naive UTC values so comparisons behave the
    same on PostgreSQL and SQLite.

    :return: datetime
    """
    return datetime.datetime.now(datetime.UTC).replace(tzinfo=None)


def from_epoch_ms(timestamp_in_ms):
    """
    Convert epoch milliseconds into a naive UTC datetime.

    :param timestamp_in_ms: Milliseconds since the epoch
    :type timestamp_in_ms: int
    :return: datetime
    """
    return datetime.datetime.fromtimestamp(
        timestamp_in_ms / 1000, tz=datetime.UTC
    ).replace(tzinfo=None)


def to_epoch_ms(value):
    """
    Convert a naive UTC datetime into epoch milliseconds.

    :param value: Naive UTC datetime
    :type value: datetime
    :return: int
    """
    return int(value.replace(tzinfo=datetime.UTC).timestamp() * 1000)
