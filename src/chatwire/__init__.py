"""
The main entrypoint for the Chatwire package.

This module contains the primary Chatwire class, which wires together the
pillars that drive a streaming conversation: the LLM client, the per-document
conversation history, the tool handler, the listener that receives stream
notifications, and the engine that orchestrates them.
"""

from typing import Optional

from . import config, engine, history, listeners, llm, store, tools, transport
from .models import AVAILABLE_MODELS, DEFAULT_MODEL, Turn

__all__ = ["Chatwire", "AVAILABLE_MODELS", "DEFAULT_MODEL", "Turn"]


class Chatwire:
    """
    A streaming conversation bound to the document currently being edited.

    The constructor uses concrete default implementations for every pillar,
    making it easy to get started while remaining fully customizable.
    """

    def __init__(
        self,
        llm: Optional["llm.LLM"] = None,
        history: Optional["history.ConversationHistory"] = None,
        tools: Optional["tools.Tool"] = None,
        listener: Optional["listeners.Listener"] = None,
        engine: Optional["engine.Engine"] = None,
        settings: Optional["config.Settings"] = None,
        system_prompt: Optional[str] = None,
    ) -> None:
        """
        Initialize Chatwire with configurable pillars.

        Parameters
        ----------
        llm : llm.LLM, optional
            Streaming client used for every request. Defaults to
            llm.Anthropic() configured from ``settings``.
        history : history.ConversationHistory, optional
            Turn storage for the associated document. Defaults to a history
            persisted in side-car files (store.File).
        tools : tools.Tool, optional
            Tool handler for model tool calls. Defaults to tools.NoTool().
        listener : listeners.Listener, optional
            Receives the stream notifications. Defaults to the listener of
            ``llm`` when one is given, else a no-op listener. The chosen
            listener is installed on the LLM client.
        engine : engine.Engine, optional
            Orchestrates the tool-use loop. Defaults to engine.Streaming().
        settings : config.Settings, optional
            Model, token limit and credentials. Defaults to values read from
            the environment.
        system_prompt : str, optional
            Sent with every request.

        Examples
        --------
        >>> chat = Chatwire(tools=my_tools, listener=my_panel)
        >>> chat.open_document("/path/to/model.scad")
        >>> await chat.send("Make the cube hollow")
        """
        llm_module = globals()["llm"]
        history_module = globals()["history"]
        store_module = globals()["store"]
        tools_module = globals()["tools"]
        listeners_module = globals()["listeners"]
        engine_module = globals()["engine"]

        self.settings = settings if settings is not None else config.Settings()
        if listener is None and llm is not None:
            listener = getattr(llm, "listener", None)
        self.listener = listener if listener is not None else listeners_module.Listener()
        self.llm = (
            llm
            if llm is not None
            else llm_module.Anthropic(
                api_key=self.settings.api_key,
                transport=transport.HTTPX(timeout=self.settings.request_timeout),
                api_url=self.settings.api_url,
            )
        )
        self.llm.listener = self.listener
        self.history = (
            history
            if history is not None
            else history_module.ConversationHistory(
                store=store_module.File(suffix=self.settings.history_suffix)
            )
        )
        self.tools = tools if tools is not None else tools_module.NoTool()
        self.engine = engine if engine is not None else engine_module.Streaming()
        self.engine.app = self
        self.model = self.settings.model
        self.max_tokens = self.settings.max_tokens
        self.system_prompt = system_prompt

    def open_document(self, path: Optional[str]) -> None:
        """Switches the conversation to the history of ``path``."""
        self.history.set_document(path)

    async def send(self, text: str):
        """Sends a user message and runs the conversation to completion."""
        return await self.engine.handle_message(text)

    def cancel(self) -> None:
        self.engine.cancel()

    def clear_history(self) -> None:
        self.history.clear()

    async def aclose(self) -> None:
        """Cancels any request, saves the history and closes the transport."""
        self.llm.cancel_request()
        if self.history.document:
            self.history.save()
        connection = getattr(self.llm, "transport", None)
        if connection is not None:
            await connection.aclose()
