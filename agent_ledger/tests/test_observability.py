import unittest
from unittest.mock import MagicMock, patch

from agent_ledger.observability import otel


class ObservabilityShutdownTests(unittest.TestCase):
    def test_failing_provider_does_not_abort_shutdown(self) -> None:
        trace_provider = MagicMock()
        trace_provider.shutdown.side_effect = ConnectionError("collector unreachable")
        meter_provider = MagicMock()
        instrumentor = MagicMock()
        instrumentor.uninstrument_app.side_effect = RuntimeError("not instrumented")
        app = object()

        with patch.object(otel, "_initialized", True), \
                patch.object(otel, "_enabled", True), \
                patch.object(otel, "_trace_provider", trace_provider), \
                patch.object(otel, "_meter_provider", meter_provider), \
                patch.object(otel, "_fastapi_instrumentor", instrumentor):
            with self.assertLogs("ledger.observability", level="WARNING"):
                otel.shutdown(app)
            self.assertFalse(otel._enabled)

        meter_provider.shutdown.assert_called_once()
        trace_provider.shutdown.assert_called_once()

    def test_shutdown_before_initialize_is_a_no_op(self) -> None:
        with patch.object(otel, "_initialized", False):
            otel.shutdown()


if __name__ == "__main__":
    unittest.main()
