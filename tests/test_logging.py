from novelforge.utils.logging import LogBuffer, LogEntry, LogLevel, get_logger, get_log_buffer


def test_buffer_filters_by_level_and_source():
    buffer = LogBuffer(max_size=10)
    buffer.add(LogEntry(LogLevel.INFO, "Job created", "queue_worker"))
    buffer.add(LogEntry(LogLevel.ERROR, "Job failed permanently", "queue_worker"))
    buffer.add(LogEntry(LogLevel.WARNING, "Using conservative fallback wait", "rate_limit"))

    assert [e["message"] for e in buffer.get_recent(level=LogLevel.ERROR)] == ["Job failed permanently"]
    assert len(buffer.get_recent(source="rate_limit")) == 1

    stats = buffer.get_stats()
    assert stats["total"] == 3
    assert stats["by_level"] == {"info": 1, "error": 1, "warning": 1}
    assert stats["by_source"] == {"queue_worker": 2, "rate_limit": 1}


def test_entries_are_tagged_with_their_job():
    buffer = LogBuffer(max_size=10)
    buffer.add(LogEntry(LogLevel.INFO, "Processing job", "queue_worker", {"job_id": "job_a"}))
    buffer.add(LogEntry(LogLevel.INFO, "Processing job", "queue_worker", {"job_id": "job_b"}))
    buffer.add(LogEntry(LogLevel.WARNING, "Job failed, will retry", "queue_worker", {"job_id": "job_a"}))
    buffer.add(LogEntry(LogLevel.INFO, "Queue worker started", "queue_worker"))

    assert [e["message"] for e in buffer.get_job_history("job_a")] == ["Processing job", "Job failed, will retry"]
    assert [e["message"] for e in buffer.get_recent(job_id="job_a")] == ["Job failed, will retry", "Processing job"]
    assert buffer.get_recent(limit=1)[0]["job_id"] is None
    assert buffer.get_stats()["jobs_seen"] == 2


def test_buffer_is_bounded():
    buffer = LogBuffer(max_size=2)
    for i in range(5):
        buffer.add(LogEntry(LogLevel.INFO, f"entry {i}"))

    assert [e["message"] for e in buffer.get_recent()] == ["entry 4", "entry 3"]


def test_app_logger_writes_metadata_to_buffer():
    get_log_buffer().clear()

    get_logger("stages").info("generate_chapter: Chapter generated", chapter_id="chapter_1", word_count=3)

    [entry] = get_log_buffer().get_recent(source="stages")
    assert entry["level"] == "info"
    assert entry["metadata"] == {"chapter_id": "chapter_1", "word_count": 3}
