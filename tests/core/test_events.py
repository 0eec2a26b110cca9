import logging

from flcm.core.events import EventEmitter, PipelineEvent


def test_listeners_receive_events_in_registration_order():
    emitter = EventEmitter()
    calls = []
    emitter.on(PipelineEvent.STAGE_TRANSITION, lambda e: calls.append(("first", e.payload["to_stage"])))
    emitter.on(PipelineEvent.STAGE_TRANSITION, lambda e: calls.append(("second", e.payload["to_stage"])))

    emitter.emit(PipelineEvent.STAGE_TRANSITION, "ctx-1", to_stage="synthesis")

    assert calls == [("first", "synthesis"), ("second", "synthesis")]


def test_wildcard_listener_sees_every_event():
    emitter = EventEmitter()
    seen = []
    emitter.on(None, seen.append)

    emitter.emit(PipelineEvent.PIPELINE_STARTED, "ctx-1")
    emitter.emit(PipelineEvent.PIPELINE_COMPLETE, "ctx-1", success=True)

    assert [e.type for e in seen] == [PipelineEvent.PIPELINE_STARTED, PipelineEvent.PIPELINE_COMPLETE]
    assert seen[0].sequence < seen[1].sequence
    assert seen[1].context_id == "ctx-1"


def test_unsubscribe_stops_delivery():
    emitter = EventEmitter()
    seen = []
    unsubscribe = emitter.on(PipelineEvent.SAVE_ERROR, seen.append)

    emitter.emit(PipelineEvent.SAVE_ERROR)
    unsubscribe()
    emitter.emit(PipelineEvent.SAVE_ERROR)

    assert len(seen) == 1


def test_failing_listener_is_logged_and_skipped(caplog):
    emitter = EventEmitter()
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    emitter.on(PipelineEvent.DOCUMENT_SAVED, broken)
    emitter.on(PipelineEvent.DOCUMENT_SAVED, seen.append)

    with caplog.at_level(logging.ERROR, logger="flcm.core.events"):
        event = emitter.emit(PipelineEvent.DOCUMENT_SAVED, document_id="b1")

    assert seen == [event]
    assert "Listener failed" in caplog.text
