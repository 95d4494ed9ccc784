import logging

from context_service.logging_filters import SuppressQuietPathFilter


def _access_record(path: str) -> logging.LogRecord:
    return logging.LogRecord(
        name="uvicorn.access",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg='%s - "%s %s HTTP/%s" %d',
        args=("127.0.0.1:12345", "GET", path, "1.1", 200),
        exc_info=None,
    )


class TestSuppressQuietPathFilter:
    def test_suppresses_health_endpoint(self):
        log_filter = SuppressQuietPathFilter()
        assert log_filter.filter(_access_record("/health")) is False

    def test_suppresses_health_with_query_string(self):
        log_filter = SuppressQuietPathFilter()
        assert log_filter.filter(_access_record("/health?verbose=1")) is False

    def test_keeps_other_endpoints(self):
        log_filter = SuppressQuietPathFilter()
        assert log_filter.filter(_access_record("/context/optimize")) is True

    def test_custom_quiet_paths(self):
        log_filter = SuppressQuietPathFilter(["/tokens"])
        assert log_filter.filter(_access_record("/tokens/count")) is False
        assert log_filter.filter(_access_record("/health")) is True

    def test_no_quiet_paths_keeps_everything(self):
        log_filter = SuppressQuietPathFilter([])
        assert log_filter.filter(_access_record("/health")) is True

    def test_suppresses_health_from_formatted_message(self):
        log_filter = SuppressQuietPathFilter()
        record = logging.LogRecord(
            name="uvicorn.access",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg='127.0.0.1:12345 - "GET /health HTTP/1.1" 200',
            args=(),
            exc_info=None,
        )
        assert log_filter.filter(record) is False

    def test_non_access_record_kept(self):
        log_filter = SuppressQuietPathFilter()
        record = logging.LogRecord(
            name="context_service", level=logging.INFO, pathname=__file__,
            lineno=1, msg="service ready", args=(), exc_info=None,
        )
        assert log_filter.filter(record) is True
