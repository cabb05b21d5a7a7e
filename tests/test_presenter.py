from listenkit.events import EventBus, EventType
from listenkit.schemas.events import ConversationMessage, ConversationUpdatePayload, ListenStatePayload, SttUpdatePayload
from listenkit.transcript.models import ListenState, Speaker, UtteranceEvent
from listenkit.transcript.presenter import TranscriptPresenter

from conftest import make_settings

T0 = 1_700_000_000_000


class Clock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def presenter(clock=None, **overrides):
    p = TranscriptPresenter(make_settings(**overrides), clock=clock or Clock())
    p.on_state(ListenState.LISTENING)
    return p


def final(speaker, text, message_id=None, timestamp=T0):
    return UtteranceEvent(speaker, text, is_partial=False, is_final=True, message_id=message_id, timestamp=timestamp)


def partial(speaker, text, message_id=None, timestamp=T0):
    return UtteranceEvent(speaker, text, is_partial=True, is_final=False, message_id=message_id, timestamp=timestamp)


def texts(messages):
    return [(m.speaker, m.text) for m in messages]


def test_partials_replace_in_place_by_message_id():
    p = presenter()
    p.on_utterance(partial(Speaker.LOCAL, "Hel", "local-1"))
    p.on_utterance(partial(Speaker.LOCAL, "Hello", "local-1"))
    p.on_utterance(final(Speaker.LOCAL, "Hello world", "local-1"))
    [msg] = p.messages
    assert msg.text == "Hello world" and msg.is_final


def test_partial_without_id_replaces_last_partial_of_speaker():
    p = presenter()
    p.on_utterance(partial(Speaker.REMOTE, "So"))
    p.on_utterance(partial(Speaker.LOCAL, "Yes"))
    p.on_utterance(partial(Speaker.REMOTE, "So we"))
    assert texts(p.messages) == [(Speaker.REMOTE, "So we"), (Speaker.LOCAL, "Yes")]


def test_late_partial_never_downgrades_a_final():
    p = presenter()
    p.on_utterance(final(Speaker.LOCAL, "Done", "local-1"))
    p.on_utterance(partial(Speaker.LOCAL, "Do", "local-1"))
    [msg] = p.messages
    assert msg.text == "Done" and msg.is_final


def test_duplicate_message_id_rejected():
    p = presenter()
    assert p.on_utterance(final(Speaker.REMOTE, "Sounds good", "remote-3"))
    assert not p.on_utterance(final(Speaker.REMOTE, "Sounds good!", "remote-3", timestamp=T0 + 10_000))
    assert len(p.messages) == 1


def test_same_text_500ms_apart_is_duplicate():
    p = presenter()
    assert p.on_utterance(final(Speaker.REMOTE, "okay", "remote-1", timestamp=T0))
    assert not p.on_utterance(final(Speaker.REMOTE, "okay", "remote-2", timestamp=T0 + 500))
    assert len(p.messages) == 1


def test_same_text_5000ms_apart_is_distinct():
    p = presenter()
    assert p.on_utterance(final(Speaker.REMOTE, "okay", "remote-1", timestamp=T0))
    assert p.on_utterance(final(Speaker.REMOTE, "okay", "remote-2", timestamp=T0 + 5_000))
    assert len(p.messages) == 2


def test_other_speaker_same_text_is_not_duplicate():
    p = presenter()
    assert p.on_utterance(final(Speaker.REMOTE, "okay", "remote-1"))
    assert p.on_utterance(final(Speaker.LOCAL, "okay", "local-2"))


def test_untimed_final_matches_recent_final_text():
    clock = Clock()
    p = presenter(clock)
    p.on_utterance(final(Speaker.REMOTE, "see you", "remote-1"))
    clock.now += 60_000
    assert not p.on_utterance(final(Speaker.REMOTE, "see you", None, timestamp=0))


def test_recent_text_policy_always():
    clock = Clock()
    p = presenter(clock, PRESENTER_RECENT_TEXT_DEDUP="always")
    p.on_utterance(final(Speaker.REMOTE, "yes", "remote-1", timestamp=T0))
    assert not p.on_utterance(final(Speaker.REMOTE, "yes", "remote-2", timestamp=T0 + 60_000))


def test_partial_echo_of_recent_final_skipped():
    p = presenter()
    p.on_utterance(final(Speaker.LOCAL, "Right", "local-1"))
    assert not p.on_utterance(partial(Speaker.LOCAL, "Right", "local-9"))
    assert len(p.messages) == 1


def test_pause_hides_non_ai_and_resume_appends_held_events():
    p = presenter()
    p.on_utterance(final(Speaker.LOCAL, "before pause", "local-1"))
    p.on_state(ListenState.PAUSED)
    assert p.visible_messages() == []

    assert p.on_utterance(final(Speaker.REMOTE, "while paused", "remote-2", timestamp=T0 + 10_000))
    p.on_state(ListenState.PROCESSING)
    p.on_utterance(partial(Speaker.AI, "Hi", "ai-1"))
    p.on_utterance(final(Speaker.AI, "Hi there", "ai-1", timestamp=T0 + 20_000))
    p.on_state(ListenState.PAUSED)
    assert texts(p.visible_messages()) == [(Speaker.AI, "Hi there")]
    assert p.pending_count == 1

    p.on_state(ListenState.LISTENING)
    assert texts(p.visible_messages()) == [
        (Speaker.LOCAL, "before pause"),
        (Speaker.AI, "Hi there"),
        (Speaker.REMOTE, "while paused"),
    ]
    assert p.pending_count == 0


def test_clear_on_resume_policy():
    p = presenter(PRESENTER_CLEAR_ON_RESUME=True)
    p.on_utterance(final(Speaker.LOCAL, "old", "local-1"))
    p.on_state(ListenState.PAUSED)
    p.on_utterance(final(Speaker.REMOTE, "new", "remote-2", timestamp=T0 + 10_000))
    p.on_state(ListenState.LISTENING)
    assert texts(p.messages) == [(Speaker.REMOTE, "new")]


def test_conversation_update_replaces_list():
    p = presenter()
    p.on_utterance(partial(Speaker.LOCAL, "draft", "local-1"))
    update = [
        ConversationMessage(speaker=Speaker.LOCAL, text="Hello", timestamp=T0, message_id="local-1"),
        ConversationMessage(speaker=Speaker.AI, text="Hi there", timestamp=T0 + 1, message_id="ai-1"),
    ]
    assert p.on_conversation(update)
    assert texts(p.messages) == [(Speaker.LOCAL, "Hello"), (Speaker.AI, "Hi there")]
    assert not p.on_utterance(final(Speaker.AI, "Hi there", "ai-1"))


def test_conversation_update_without_ai_ignored_while_gated():
    p = presenter()
    p.on_state(ListenState.PAUSED)
    update = [ConversationMessage(speaker=Speaker.LOCAL, text="Hello", timestamp=T0)]
    assert not p.on_conversation(update)


def test_follows_the_event_bus():
    bus = EventBus()
    p = TranscriptPresenter(make_settings(), clock=Clock())
    bus.subscribe(p.handle_event)
    bus.publish(EventType.STATE, ListenStatePayload(is_listening=True))
    bus.publish(EventType.STT_UPDATE, SttUpdatePayload.from_event(final(Speaker.REMOTE, "hi", "remote-1")))
    assert texts(p.visible_messages()) == [(Speaker.REMOTE, "hi")]
    bus.publish(EventType.STATE, ListenStatePayload(is_listening=True, is_paused=True))
    assert p.gated
    bus.publish(
        EventType.CONVERSATION_UPDATE,
        ConversationUpdatePayload(messages=[ConversationMessage(speaker=Speaker.AI, text="ok", timestamp=T0)]),
    )
    assert texts(p.visible_messages()) == [(Speaker.AI, "ok")]


def test_empty_text_and_reset():
    p = presenter()
    assert not p.on_utterance(final(Speaker.LOCAL, "", "local-1"))
    p.on_utterance(final(Speaker.LOCAL, "x", "local-2"))
    p.reset()
    assert p.messages == [] and p.pending_count == 0
