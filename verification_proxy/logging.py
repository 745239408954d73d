import logging
import sys

from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get('service'):
            log_record['service'] = 'verification-proxy'
        if not log_record.get('level'):
            log_record['level'] = record.levelname
        if not log_record.get('timestamp'):
            log_record['timestamp'] = self.formatTime(record, self.datefmt)
        if 'message' not in log_record:
            log_record['message'] = record.getMessage()

        # Registry context, when the caller passed it through `extra`
        for attr in ('registry', 'provider', 'account'):
            if hasattr(record, attr):
                log_record[attr] = getattr(record, attr)


def setup_logging(level: str = "INFO"):
    logger = logging.getLogger()
    logger.setLevel(level)

    # Drop handlers installed by the server so records are not emitted twice
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        '%(timestamp)s %(level)s %(service)s %(message)s %(registry)s %(provider)s'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    for name in ("uvicorn.access", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.addHandler(handler)
        uvicorn_logger.propagate = False
