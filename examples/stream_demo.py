"""Minimal demonstration of a streaming chat turn with an @mention."""

import asyncio

from assistant_core.api.service import ChatService, create_mention_controller
from assistant_core.streaming.reducer import ConversationSession


def show(conversation):
    message = conversation.messages[-1]
    marker = "..." if message.is_streaming else ""
    print(f"\r{message.role}: {message.content}{marker}", end="", flush=True)


async def main():
    service = ChatService(ConversationSession.new("demo"), on_update=show)
    controller = create_mention_controller()

    text = "请总结 @年报"
    await controller.update(text, len(text))
    controller.handle_key("Enter")

    outcome = await service.send_from(controller)
    print()
    print("Status:", outcome.status if outcome else "skipped")


if __name__ == "__main__":
    asyncio.run(main())
