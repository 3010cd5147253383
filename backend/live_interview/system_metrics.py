import threading
import time
from typing import Any


_lock = threading.Lock()
_started_at = time.time()
_metrics: dict[str, float] = {
    "ws_connections_active": 0.0,
    "ws_connections_total": 0.0,
    "sessions_test_mode_total": 0.0,
    "ws_disconnects_total": 0.0,
    "ws_disconnect_client_disconnect": 0.0,
    "ws_disconnect_end_interview": 0.0,
    "ws_disconnect_fatal_error": 0.0,
    "ws_disconnect_other": 0.0,
    "asr_connect_failures": 0.0,
    "asr_disconnects": 0.0,
    "transcript_updates_sent": 0.0,
    "answer_streams_started": 0.0,
    "answer_streams_completed": 0.0,
    "answer_streams_cancelled": 0.0,
    "llm_failures": 0.0,
    "error_frames_sent": 0.0,
    "stream_duration_total_sec": 0.0,
    "stream_duration_samples": 0.0,
}


def increment_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = float(_metrics.get(key, 0.0)) + float(amount)


def decrement_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        next_value = float(_metrics.get(key, 0.0)) - float(amount)
        _metrics[key] = max(0.0, next_value)


def get_metric(name: str) -> float:
    with _lock:
        return float(_metrics.get(str(name or "").strip(), 0.0))


def observe_stream_duration(seconds: float) -> None:
    duration = max(0.0, float(seconds or 0.0))
    with _lock:
        _metrics["stream_duration_total_sec"] = float(_metrics.get("stream_duration_total_sec", 0.0)) + duration
        _metrics["stream_duration_samples"] = float(_metrics.get("stream_duration_samples", 0.0)) + 1.0


def record_ws_disconnect(reason: str) -> None:
    normalized = str(reason or "").strip().lower().replace(" ", "_").replace("-", "_")
    key_map = {
        "client_disconnect": "ws_disconnect_client_disconnect",
        "end_interview": "ws_disconnect_end_interview",
        "fatal_error": "ws_disconnect_fatal_error",
    }
    metric_key = key_map.get(normalized, "ws_disconnect_other")
    with _lock:
        _metrics["ws_disconnects_total"] = float(_metrics.get("ws_disconnects_total", 0.0)) + 1.0
        _metrics[metric_key] = float(_metrics.get(metric_key, 0.0)) + 1.0


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        data = dict(_metrics)

    stream_samples = max(1.0, float(data.get("stream_duration_samples") or 0.0))

    payload: dict[str, Any] = {
        "generated_at": time.time(),
        "uptime_sec": round(time.time() - _started_at, 1),
    }
    payload.update({key: int(value) if not key.endswith("_sec") else float(value) for key, value in data.items()})
    payload["avg_stream_duration"] = round(float(data.get("stream_duration_total_sec") or 0.0) / stream_samples, 4)

    if extra:
        payload.update(extra)
    return payload
