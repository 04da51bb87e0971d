from leaddesk.services.result import ErrorCode, Result


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success({"assistant_message": "Hi"})
        assert result.ok is True
        assert result.value == {"assistant_message": "Hi"}
        assert result.error is None
        assert result.error_code is None

    def test_success_without_value(self):
        assert Result.success().value is None


class TestResultFailure:
    def test_failure_with_error_code_enum(self):
        result = Result.failure("Server exploded", ErrorCode.SEND_FAILED)
        assert result.ok is False
        assert result.error == "Server exploded"
        assert result.error_code == "send_failed"
        assert result.value is None

    def test_failure_with_plain_code(self):
        assert Result.failure("Nope", "custom").error_code == "custom"

    def test_failure_default_code(self):
        assert Result.failure("Error message").error_code == "unknown"


class TestResultUnwrapOr:
    def test_returns_value_on_success(self):
        assert Result.success(3).unwrap_or(0) == 3

    def test_returns_default_on_failure(self):
        assert Result.failure("Error", ErrorCode.BUSY).unwrap_or(0) == 0

    def test_keeps_none_value(self):
        assert Result.success(None).unwrap_or("default") is None
