from monitoring.metrics import StorageMetricsRecorder, summarize_recent_saves


def test_summary_empty():
    recorder = StorageMetricsRecorder()
    assert recorder.summary() == {}
    assert summarize_recent_saves(recorder) == "No saves recorded."


def test_summary_counts_failures():
    recorder = StorageMetricsRecorder()
    recorder.record_save("a", success=True, cleaned=False, usage=0.2, message_count=3)
    recorder.record_save("b", success=False, cleaned=True, usage=0.97, message_count=3, error_kind="capacity_exceeded")
    recorder.record_save("c", success=False, cleaned=False, usage=0.97, message_count=1, error_kind="storage_full")
    recorder.record_save("d", success=False, cleaned=False, usage=0.97, message_count=1, error_kind="storage_full")
    recorder.record_cleanup("emergency", requested=4, removed=2)

    data = recorder.summary()
    assert data["saves"] == 4
    assert data["success_rate"] == 0.25
    assert data["cleaned_saves"] == 1
    assert data["keys_evicted"] == 2
    assert data["most_common_failure"] == "storage_full"
    assert "Success rate: 25%" in summarize_recent_saves(recorder)
