"""LangGraph admin agent for feed-autogen."""

import os
import sqlite3
from typing import Literal

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import SystemMessage, ToolMessage
from langgraph.checkpoint.sqlite import SqliteSaver
from langgraph.graph import END, START, MessagesState, StateGraph

from feed_autogen.tools import (
    add_source,
    delete_source,
    list_items,
    list_sources,
    poll_source_now,
    process_feed_item,
    update_source_config,
)

SYSTEM_PROMPT = """You are the admin assistant of a content-automation system that polls RSS and Atom
sources and turns new feed items into articles with AI generation.

You help administrators:
- Add sources by feed URL and list them with their status and settings
- Turn polling and automatic article generation on or off per source
- Change how many new items are ingested per poll and how often a source is polled
- Poll a source right away and report what was fetched, new, duplicate and generated
- Review feed items by state: "new" (never sent to generation), "pending" (generation failed,
  retried on the next poll) and "processed" (article generated)
- Generate an article for a single feed item by hand
- Delete sources that have no feed items

When the user wants to add a source, use add_source. Auto-generation stays off unless they ask for it.
When the user asks about sources, use list_sources.
When the user wants to change a source's settings, use update_source_config with only the options they named.
When the user wants fresh items from a source now, use poll_source_now.
When the user asks about items or failures, use list_items, filtered by source and state as needed.
When the user wants an article for a specific item, use process_feed_item.
When the user wants to remove a source, use delete_source.
When the user's intent is unclear, ask a clarifying question rather than guessing.
Report counts plainly and list per-item errors when a poll or generation fails.
Be concise but informative in your responses."""

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

# All tools available to the agent
TOOLS = [
    add_source,
    list_sources,
    update_source_config,
    poll_source_now,
    list_items,
    process_feed_item,
    delete_source,
]


def create_agent(
    checkpoint_db_path: str = "feed_autogen_checkpoints.db",
    tools: list | None = None,
):
    """Create and compile the LangGraph agent.

    Args:
        checkpoint_db_path: Path to SQLite database for LangGraph checkpointing.
        tools: List of tool functions to bind to the agent. If None, uses default TOOLS.

    Returns:
        Compiled LangGraph agent.
    """
    if tools is None:
        tools = TOOLS

    model = ChatAnthropic(
        model=os.environ.get("ADMIN_AGENT_MODEL", DEFAULT_MODEL),
        temperature=0,
    )

    if tools:
        model_with_tools = model.bind_tools(tools)
    else:
        model_with_tools = model

    tools_by_name = {tool.name: tool for tool in tools}

    def agent_node(state: MessagesState):
        """LLM call node: decides whether to use a tool or respond directly."""
        messages = [SystemMessage(content=SYSTEM_PROMPT)] + state["messages"]
        response = model_with_tools.invoke(messages)
        return {"messages": [response]}

    def tool_node(state: MessagesState):
        """Execute tool calls from the LLM response."""
        results = []
        last_message = state["messages"][-1]
        for tool_call in last_message.tool_calls:
            tool = tools_by_name[tool_call["name"]]
            result = tool.invoke(tool_call["args"])
            results.append(
                ToolMessage(content=str(result), tool_call_id=tool_call["id"])
            )
        return {"messages": results}

    def should_continue(state: MessagesState) -> Literal["tool_node", "__end__"]:
        """Route to tool execution or end based on LLM output."""
        last_message = state["messages"][-1]
        if last_message.tool_calls:
            return "tool_node"
        return END

    builder = StateGraph(MessagesState)
    builder.add_node("agent_node", agent_node)
    builder.add_node("tool_node", tool_node)

    builder.add_edge(START, "agent_node")
    builder.add_conditional_edges("agent_node", should_continue, ["tool_node", END])
    builder.add_edge("tool_node", "agent_node")

    checkpointer = SqliteSaver(sqlite3.connect(checkpoint_db_path, check_same_thread=False))
    return builder.compile(checkpointer=checkpointer)
