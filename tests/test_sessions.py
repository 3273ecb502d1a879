import pytest

from debugger_chat.models import DEFAULT_SESSION_NAME, Message, Session
from debugger_chat.sessions import (
    append_message,
    create_session,
    delete_session,
    finalize_title,
    switch_to,
    title_for,
)


def _user(text: str) -> Message:
    return Message(sender="user", text=text)


def test_create_session_defaults():
    s = create_session()
    assert s.name == DEFAULT_SESSION_NAME
    assert s.messages == ()
    assert s.is_new is True
    assert s.id and s.id != create_session().id


@pytest.mark.parametrize("sessions", [[], [Session(), Session()]])
def test_switch_to_unknown_id_creates_exactly_one_new_current_session(sessions):
    out, active_id, messages = switch_to("missing", sessions)
    assert len(out) == len(sessions) + 1
    new = [s for s in out if s not in sessions]
    assert len(new) == 1
    assert new[0].id == active_id
    assert out[0].id == active_id
    assert messages == ()


def test_switch_to_existing_returns_its_messages():
    m = _user("hello")
    s = Session(messages=(m,), is_new=False)
    out, active_id, messages = switch_to(s.id, [Session(), s])
    assert active_id == s.id
    assert messages == (m,)
    assert len(out) == 2


def test_append_first_user_message_titles_session_and_clears_new():
    s = create_session()
    first = _user("Why does my lambda time out after three seconds every time?")
    out = append_message(s.id, first, [s])
    assert out[0].name == title_for([first])
    assert out[0].is_new is False

    out2 = append_message(s.id, _user("another question"), out)
    assert out2[0].name == out[0].name
    assert [m.text for m in out2[0].messages] == [first.text, "another question"]


def test_append_non_user_message_keeps_new_flag():
    s = create_session()
    out = append_message(s.id, Message(sender="system", text="Error: boom"), [s])
    assert out[0].is_new is True
    assert out[0].name == DEFAULT_SESSION_NAME


def test_append_unknown_session_is_noop():
    s = create_session()
    out = append_message("nope", _user("hi"), [s])
    assert out == [s]


def test_append_does_not_mutate_input():
    s = create_session()
    sessions = [s]
    append_message(s.id, _user("hi"), sessions)
    assert sessions[0].messages == ()


def test_title_for_truncates_to_forty_chars_plus_ellipsis():
    text = "x" * 41
    title = title_for([_user(text)])
    assert title == "x" * 40 + "..."
    assert len(title) <= 43


def test_title_for_exact_forty_chars_no_ellipsis():
    assert title_for([_user("y" * 40)]) == "y" * 40


def test_title_for_without_user_message_returns_default():
    assert title_for([]) == DEFAULT_SESSION_NAME
    assert title_for([Message(sender="assistant", text="hi")]) == DEFAULT_SESSION_NAME


def test_title_for_uses_first_user_message():
    msgs = [Message(sender="assistant", text="welcome"), _user("first"), _user("second")]
    assert title_for(msgs) == "first"


def test_finalize_title_only_touches_new_sessions_with_messages():
    titled = Session(messages=(_user("keep me"),), is_new=True)
    empty = Session()
    out = finalize_title(titled.id, [titled, empty])
    assert out[0].name == "keep me" and out[0].is_new is False
    assert finalize_title(empty.id, [empty]) == [empty]


def test_delete_current_with_one_other_remaining_switches_to_it():
    a = Session(timestamp=1)
    b = Session(timestamp=2)
    out, current = delete_session(b.id, [a, b], b.id)
    assert out == [a]
    assert current == a.id


def test_delete_current_picks_most_recent_remaining():
    old = Session(timestamp=10)
    recent = Session(timestamp=30)
    current = Session(timestamp=20)
    out, new_current = delete_session(current.id, [old, recent, current], current.id)
    assert new_current == recent.id
    assert len(out) == 2


def test_delete_only_session_creates_fresh_current():
    only = Session()
    out, current = delete_session(only.id, [only], only.id)
    assert len(out) == 1
    assert out[0].id == current
    assert out[0].id != only.id
    assert out[0].messages == ()


def test_delete_non_current_keeps_current():
    a, b = Session(), Session()
    out, current = delete_session(b.id, [a, b], a.id)
    assert current == a.id
    assert out == [a]


def test_delete_unknown_id_is_noop():
    a = Session()
    out, current = delete_session("ghost", [a], a.id)
    assert out == [a]
    assert current == a.id
