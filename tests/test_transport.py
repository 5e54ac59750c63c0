import io

import pytest
from rich.console import Console

from assistbridge.model import REL_THREAD
from assistbridge.transport import ConsoleTransport, OutgoingReply


def _transport() -> tuple[ConsoleTransport, io.StringIO]:
    buffer = io.StringIO()
    console = Console(file=buffer, force_terminal=False, width=80)
    return ConsoleTransport(console=console), buffer


@pytest.mark.anyio
async def test_messages_are_retrievable_events() -> None:
    transport, _ = _transport()

    first = transport.message("hello")
    reply = transport.message("more", thread_root=first.event_id)

    assert first.event_id != reply.event_id
    assert reply.root_event_id == first.event_id
    assert reply.relation is not None
    assert reply.relation.rel_type == REL_THREAD
    assert await transport.get_event(transport.room_id, first.event_id) == first
    assert await transport.get_event("!elsewhere:localhost", first.event_id) is None
    assert transport.is_dm(transport.room_id)


@pytest.mark.anyio
async def test_plain_reply_is_printed_verbatim() -> None:
    transport, buffer = _transport()

    await transport.send_reply(
        OutgoingReply(room_id=transport.room_id, root_event_id="$1", text="[b]x[/b]")
    )

    assert "[b]x[/b]" in buffer.getvalue()


@pytest.mark.anyio
async def test_rich_reply_renders_markdown() -> None:
    transport, buffer = _transport()

    await transport.send_reply(
        OutgoingReply(
            room_id=transport.room_id, root_event_id="$1", text="**bold**", rich=True
        )
    )

    output = buffer.getvalue()
    assert "bold" in output
    assert "**" not in output


@pytest.mark.anyio
async def test_error_text_is_printed() -> None:
    transport, buffer = _transport()

    await transport.send_text(transport.room_id, "Error with body: ")

    assert "Error with body:" in buffer.getvalue()
