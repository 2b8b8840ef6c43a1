from __future__ import annotations

import datetime as dt

from cursor_chat.models import Bubble, BubbleType, Conversation, SyncState, WorkspaceInfo


def _at(minute: int) -> dt.datetime:
    return dt.datetime(2024, 1, 1, 12, minute, tzinfo=dt.UTC)


def test_bubble_type_from_code() -> None:
    assert BubbleType.from_code(1) == BubbleType.USER
    assert BubbleType.from_code(2) == BubbleType.ASSISTANT
    assert BubbleType.from_code(9) == BubbleType.UNKNOWN
    assert BubbleType.from_code(None) == BubbleType.UNKNOWN
    assert BubbleType.from_code("x") == BubbleType.UNKNOWN
    assert BubbleType.USER.label() == "User"


def test_sort_bubbles_puts_undated_first_and_is_stable() -> None:
    conversation = Conversation(
        composer_id="c1",
        bubbles=[
            Bubble("late", created_at=_at(5)),
            Bubble("undated-a"),
            Bubble("early", created_at=_at(1)),
            Bubble("tie-1", created_at=_at(3)),
            Bubble("undated-b"),
            Bubble("tie-2", created_at=_at(3)),
        ],
    )
    conversation.sort_bubbles()
    assert [b.bubble_id for b in conversation.bubbles] == [
        "undated-a",
        "undated-b",
        "early",
        "tie-1",
        "tie-2",
        "late",
    ]


def test_generate_title_from_first_user_message() -> None:
    conversation = Conversation(
        composer_id="abcdef123456",
        bubbles=[
            Bubble("a0", BubbleType.ASSISTANT, "Welcome!"),
            Bubble("u0", BubbleType.USER, "How do I fix the Flaky test?"),
        ],
    )
    assert conversation.generate_title() == "how_do_i_fix_the_flaky_test"
    assert conversation.filename() == "abcdef12_how_do_i_fix_the_flaky_test"


def test_generate_title_truncates_words_and_chars() -> None:
    conversation = Conversation(
        composer_id="c1",
        bubbles=[Bubble("u0", BubbleType.USER, "one two three four five six seven eight nine ten")],
    )
    assert conversation.generate_title() == "one_two_three_four_five_six_seven_eight"

    long_word = Conversation(composer_id="c2", bubbles=[Bubble("u0", BubbleType.USER, "x" * 80)])
    assert long_word.generate_title() == "x" * 50


def test_generate_title_fallback_without_user_message() -> None:
    conversation = Conversation(
        composer_id="c1", bubbles=[Bubble("a0", BubbleType.ASSISTANT, "only me")]
    )
    assert conversation.generate_title() == Conversation.TITLE_FALLBACK


def test_message_counts_and_preview() -> None:
    conversation = Conversation(
        composer_id="c1",
        bubbles=[
            Bubble("u0", BubbleType.USER, "question"),
            Bubble("a0", BubbleType.ASSISTANT, "answer"),
            Bubble("x0", BubbleType.UNKNOWN, "tool output"),
        ],
    )
    assert conversation.message_count() == 3
    assert conversation.user_message_count() == 1
    assert conversation.assistant_message_count() == 1
    assert conversation.preview() == "question"
    assert Conversation(composer_id="empty").preview() == "[Empty conversation]"


def test_workspace_info_from_uri() -> None:
    info = WorkspaceInfo.from_uri("file:///home/dev/my-app")
    assert info.name == "my-app"
    assert str(info.path) == "/home/dev/my-app"
    assert WorkspaceInfo.from_uri("vscode-remote://host/x").name == "unknown"


def test_sync_state_transitions() -> None:
    state = SyncState().syncing()
    assert state.is_syncing is True

    state.with_error("boom")
    assert state.is_syncing is False
    assert state.last_error == "boom"

    state.syncing().with_error("disk full", still_syncing=True)
    assert state.is_syncing is True

    state.with_sync_time().completed()
    assert state.is_syncing is False
    assert state.last_error is None
    assert state.last_sync is not None
