"""Entry point for feed-autogen: python -m feed_autogen"""

import asyncio
import logging
import os
import uuid

from langchain_core.messages import HumanMessage

from feed_autogen.agent import create_agent
from feed_autogen.database import Database
from feed_autogen.generator import LLMArticleGenerator
from feed_autogen.poller import start_polling
from feed_autogen.tools import set_database

DEFAULT_DB_PATH = "feed_autogen.db"
CHECKPOINT_DB_PATH = "feed_autogen_checkpoints.db"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("langchain").setLevel(logging.WARNING)


def _new_thread() -> dict:
    return {"configurable": {"thread_id": uuid.uuid4().hex}}


async def chat_loop(agent) -> None:
    """Read admin requests from stdin and print the assistant's replies.

    Polling keeps running in the background while the prompt waits.
    """
    print("feed-autogen admin. Ask about sources, polls or feed items (Ctrl+C to quit).\n")
    config = _new_thread()

    while True:
        try:
            user_input = await asyncio.to_thread(input, "admin> ")
        except EOFError:
            break

        if not user_input.strip():
            continue

        try:
            response = await asyncio.to_thread(
                agent.invoke,
                {"messages": [HumanMessage(content=user_input)]},
                config,
            )
        except Exception as e:
            error_msg = str(e)
            if "tool_use" in error_msg and "tool_result" in error_msg:
                # A tool call without its result is stored in the thread
                config = _new_thread()
                print("\nConversation history was reset, please repeat the request.\n")
            else:
                print(f"\nRequest failed: {error_msg}\n")
            continue

        print(f"\n{response['messages'][-1].content}\n")


async def main() -> None:
    """Open the store, start the poller and run the admin chat."""
    db_path = os.environ.get("FEED_AUTOGEN_DB_PATH", DEFAULT_DB_PATH)
    checkpoint_path = os.environ.get("FEED_AUTOGEN_CHECKPOINT_PATH", CHECKPOINT_DB_PATH)

    db = Database(db_path)
    db.connect()
    generator = LLMArticleGenerator(db)
    set_database(db, generator)
    agent = create_agent(checkpoint_db_path=checkpoint_path)

    poller_task = asyncio.create_task(start_polling(db, generator))

    try:
        await chat_loop(agent)
    except KeyboardInterrupt:
        print("\nStopping.")
    finally:
        poller_task.cancel()
        try:
            await poller_task
        except asyncio.CancelledError:
            pass
        db.close()


if __name__ == "__main__":
    asyncio.run(main())
