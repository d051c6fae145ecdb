from core.metrics import Histogram, MetricsCollector


class TestHistogram:
    def test_empty_percentiles(self):
        assert Histogram().percentiles(50, 99) == {"p50": 0.0, "p99": 0.0}

    def test_percentiles(self):
        hist = Histogram()
        for v in range(1, 101):
            hist.record(float(v))
        assert hist.count == 100
        assert hist.sum == 5050.0
        assert hist.percentiles(50, 99) == {"p50": 51.0, "p99": 100.0}


class TestMetricsCollector:
    def test_counter_labels(self):
        metrics = MetricsCollector()
        metrics.increment_counter("requests", {"endpoint": "A", "status": "200"})
        metrics.increment_counter("requests", {"status": "200", "endpoint": "A"}, value=2)
        assert metrics.counter_value("requests", {"endpoint": "A", "status": "200"}) == 3
        assert metrics.counter_value("requests", {"endpoint": "B"}) == 0
        assert metrics.counter_value("missing") == 0

    def test_get_metrics(self):
        metrics = MetricsCollector()
        metrics.increment_counter("retries.exhausted")
        metrics.record_histogram("latency.ms", 4.0, {"endpoint": "A"})
        result = metrics.get_metrics()
        assert result["counters"]["retries.exhausted"] == {"_": 1}
        assert result["histograms"]["latency.ms"]['{endpoint="A"}']["count"] == 1

    def test_export_prometheus(self):
        metrics = MetricsCollector()
        metrics.increment_counter("requests.total", {"endpoint": "A"})
        metrics.increment_counter("retries.exhausted")
        metrics.record_histogram("latency.ms", 2.5, {"endpoint": "A"})
        text = metrics.export_prometheus()
        assert 'lb_requests_total{endpoint="A"} 1' in text
        assert "lb_retries_exhausted_total 1" in text
        assert 'lb_latency_ms_count{endpoint="A"} 1' in text
        assert 'lb_latency_ms_sum{endpoint="A"} 2.5' in text

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.increment_counter("a")
        metrics.reset()
        assert metrics.export_prometheus() == ""
